import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)  # "student" | "professional" | "coordinator"
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)

    # Student aggregate, incremented atomically when an activity is completed.
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ProfessionalStudent(Base):
    """A student on a professional's assigned list."""

    __tablename__ = "professional_students"
    __table_args__ = (UniqueConstraint("professional_id", "student_id", name="uq_professional_student"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    professional_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    student_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
