import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from core.errors import StateConflictError
from models.base import Base


class PerformanceSnapshot(Base):
    """Weekly performance record for one instance. Written once, never updated."""

    __tablename__ = "performance_snapshots"
    __table_args__ = (UniqueConstraint("schedule_instance_id", "week_number", name="uq_snapshot_instance_week"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_instance_id: Mapped[str] = mapped_column(
        String, ForeignKey("schedule_instances.id"), index=True, nullable=False
    )
    student_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    week_start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    week_end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    engagement: Mapped[dict] = mapped_column(JSON, nullable=False)
    performance: Mapped[dict] = mapped_column(JSON, nullable=False)
    activity_type_analysis: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    daily_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    insights: Mapped[dict] = mapped_column(JSON, nullable=False)

    streak_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generated_by: Mapped[str] = mapped_column(String, nullable=False, default="system")  # system | manual

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def completion_rate(self) -> int:
        return int((self.engagement or {}).get("completion_rate", 0))


@event.listens_for(PerformanceSnapshot, "before_update")
def _reject_snapshot_update(mapper, connection, target: PerformanceSnapshot) -> None:
    raise StateConflictError(f"Performance snapshot {target.id} is immutable.")
