from datetime import timedelta

from sqlalchemy.orm import Session

from core.clock import local_today
from core.context import ROLE_COORDINATOR, ROLE_PROFESSIONAL, ROLE_STUDENT, ActorContext
from models.template import ScheduleTemplate
from models.user import ProfessionalStudent, User
from schemas.template import TemplateCreate
from services.auth_service import hash_password
from services.template_service import create_template

DEMO_PASSWORD = "Password123!"
DEMO_STUDENT_EMAIL = "demo.student@schedules.local"
DEMO_PROFESSIONAL_EMAIL = "demo.professional@schedules.local"
DEMO_COORDINATOR_EMAIL = "demo.coordinator@schedules.local"
DEMO_TEMPLATE_NAME = "Weekly Wellbeing Routine"


def _get_or_create_user(db: Session, email: str, name: str, role: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, name=name, role=role, hashed_password=hash_password(DEMO_PASSWORD))
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def seed_demo_data(db: Session) -> None:
    student = _get_or_create_user(db, DEMO_STUDENT_EMAIL, "Demo Student", ROLE_STUDENT)
    professional = _get_or_create_user(db, DEMO_PROFESSIONAL_EMAIL, "Demo Professional", ROLE_PROFESSIONAL)
    _get_or_create_user(db, DEMO_COORDINATOR_EMAIL, "Demo Coordinator", ROLE_COORDINATOR)

    link = (
        db.query(ProfessionalStudent)
        .filter(ProfessionalStudent.professional_id == professional.id, ProfessionalStudent.student_id == student.id)
        .first()
    )
    if not link:
        db.add(ProfessionalStudent(professional_id=professional.id, student_id=student.id))
        db.commit()

    # One demo template, left unassigned.
    exists = (
        db.query(ScheduleTemplate)
        .filter(ScheduleTemplate.owner_id == professional.id, ScheduleTemplate.name == DEMO_TEMPLATE_NAME)
        .first()
    )
    if exists:
        return

    today = local_today()
    data = TemplateCreate.model_validate(
        {
            "name": DEMO_TEMPLATE_NAME,
            "description": "Breathing on Mondays, a short reflection on Wednesdays, a checklist on Fridays.",
            "category": "therapeutic",
            "active_days": [1, 3, 5],
            "start_date": today,
            "end_date": today + timedelta(weeks=8),
            "tags": ["demo"],
            "activities": [
                {
                    "type": "quick",
                    "day_of_week": 1,
                    "title": "Five minutes of box breathing",
                    "instructions": "Inhale 4s, hold 4s, exhale 4s, hold 4s.",
                    "metadata": {"estimated_duration": 5, "difficulty": "easy"},
                },
                {
                    "type": "text",
                    "day_of_week": 3,
                    "title": "Weekly reflection",
                    "instructions": "What went well this week?",
                    "config": {"min_words": 20, "max_words": 300},
                },
                {
                    "type": "checklist",
                    "day_of_week": 5,
                    "title": "Sleep hygiene checklist",
                    "config": {
                        "items": [
                            {"id": "screens", "label": "No screens 1h before bed"},
                            {"id": "caffeine", "label": "No caffeine after 4pm"},
                            {"id": "journal", "label": "Journal for 5 minutes", "required": False},
                        ]
                    },
                },
            ],
        }
    )
    create_template(db, ActorContext(actor_id=professional.id, role=ROLE_PROFESSIONAL), data)
