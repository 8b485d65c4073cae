import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
SKIPPED = "skipped"

TERMINAL_STATUSES = (COMPLETED, SKIPPED)


class ActivityProgress(Base):
    """
    One occurrence of an activity in one week of an instance.

    activity_snapshot is a copy of the activity taken when the row was
    generated, so later template edits never reach past weeks.
    """

    __tablename__ = "activity_progress"
    __table_args__ = (
        UniqueConstraint("schedule_instance_id", "week_number", "activity_id", name="uq_progress_week_activity"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_instance_id: Mapped[str] = mapped_column(
        String, ForeignKey("schedule_instances.id"), index=True, nullable=False
    )
    activity_id: Mapped[str] = mapped_column(String, nullable=False)
    student_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)

    week_number: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    activity_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default=PENDING)
    execution_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def activity_type(self) -> str:
        return str((self.activity_snapshot or {}).get("type", "unknown"))
