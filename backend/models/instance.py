import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base

OPEN_STATUSES = ("active", "paused")


def empty_progress_cache() -> dict:
    return {
        "completed_activities": 0,
        "total_activities": 0,
        "completion_percentage": 0,
        "points_earned": 0,
        "streak_weeks": 0,
        "last_updated_at": None,
    }


class ScheduleInstance(Base):
    """A student's assignment of one exact template version."""

    __tablename__ = "schedule_instances"
    __table_args__ = (
        # At most one open instance per (student, template lineage).
        Index(
            "uq_open_instance_per_lineage",
            "student_id",
            "template_lineage_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'paused')"),
            postgresql_where=text("status IN ('active', 'paused')"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    template_id: Mapped[str] = mapped_column(String, ForeignKey("schedule_templates.id"), index=True, nullable=False)
    template_lineage_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    template_version: Mapped[int] = mapped_column(Integer, nullable=False)

    student_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    professional_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)

    status: Mapped[str] = mapped_column(String, index=True, nullable=False, default="active")  # active | paused | completed

    current_week_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_week_start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    current_week_end_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Current-week counters; rebuilt from activity_progress + snapshots, zeroed on rollover.
    progress_cache: Mapped[dict] = mapped_column(JSON, nullable=False, default=empty_progress_cache)

    # Cumulative across weeks; rollover never touches these.
    lifetime_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
