import os
import tempfile
from datetime import date, datetime

# Must be set before anything imports core.config.
_TMP = tempfile.mkdtemp(prefix="schedule-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["RESET_SCHEDULER_ENABLED"] = "false"
os.environ["TIMEZONE"] = "America/Sao_Paulo"
os.environ["STREAK_THRESHOLD"] = "50"

import pytest  # noqa: E402

from core.context import ROLE_COORDINATOR, ROLE_PROFESSIONAL, ROLE_STUDENT, ActorContext  # noqa: E402
from database.session import SessionLocal, engine  # noqa: E402
from models.base import Base  # noqa: E402
from models.user import ProfessionalStudent, User  # noqa: E402
from schemas.template import TemplateCreate  # noqa: E402
from services.auth_service import hash_password  # noqa: E402
from services.reset_service import ResetProcessor  # noqa: E402

PASSWORD = "Password123!"

# Wednesday 2024-06-05 12:00 in Sao Paulo (UTC-3). Week 1 runs Mon 06-03 .. Sun 06-09.
ASSIGNED_AT = datetime(2024, 6, 5, 15, 0)
# Monday 2024-06-10 00:05 local, just after week 1 ended.
AFTER_WEEK_1 = datetime(2024, 6, 10, 3, 5)


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        yield session


@pytest.fixture()
def session_factory(db):
    return SessionLocal


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role: str = ROLE_STUDENT, email: str | None = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role}{counter['n']}@example.com",
            name=f"{role.title()} {counter['n']}",
            role=role,
            hashed_password=hash_password(PASSWORD),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def professional(make_user):
    return make_user(ROLE_PROFESSIONAL)


@pytest.fixture()
def coordinator(make_user):
    return make_user(ROLE_COORDINATOR)


@pytest.fixture()
def student(db, make_user, professional):
    s = make_user(ROLE_STUDENT)
    link_student(db, professional, s)
    return s


def link_student(db, professional: User, student: User) -> None:
    db.add(ProfessionalStudent(professional_id=professional.id, student_id=student.id))
    db.commit()


def actor(user: User) -> ActorContext:
    return ActorContext(actor_id=user.id, role=user.role)


def quick(day: int, title: str | None = None, order: int = 0, points: int = 10) -> dict:
    return {
        "type": "quick",
        "day_of_week": day,
        "order_index": order,
        "title": title or f"Quick activity day {day}",
        "scoring": {"points_on_completion": points},
    }


def template_payload(**overrides) -> TemplateCreate:
    data = {
        "name": "Weekly routine",
        "category": "mixed",
        "active_days": [1, 3, 5],
        "start_date": date(2024, 6, 1),
        "end_date": date(2024, 8, 31),
        "activities": [quick(1), quick(3), quick(5)],
    }
    data.update(overrides)
    return TemplateCreate.model_validate(data)


@pytest.fixture()
def processor(session_factory):
    return ResetProcessor(session_factory, None, max_workers=1, retry_backoff=0, instance_timeout=10)
