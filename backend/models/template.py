import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import utcnow
from models.base import Base


class ScheduleTemplate(Base):
    """
    One version of a weekly activity plan.

    Versions are never edited in place: an edit forks a new row sharing the
    same lineage_id with version + 1. Instances keep pointing at the exact
    version they were assigned.
    """

    __tablename__ = "schedule_templates"
    __table_args__ = (UniqueConstraint("lineage_id", "version", name="uq_template_lineage_version"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    lineage_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    owner_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False)  # "therapeutic" | "educational" | "mixed"

    active_days: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # weekdays, 0 = Sunday
    repeat_rules: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # {"reset_on_repeat": bool}
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    superseded_by_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    activities: Mapped[list["ScheduleActivity"]] = relationship(back_populates="template")

    @property
    def reset_on_repeat(self) -> bool:
        return bool((self.repeat_rules or {}).get("reset_on_repeat", True))


class ScheduleActivity(Base):
    __tablename__ = "schedule_activities"
    __table_args__ = (
        UniqueConstraint("template_id", "day_of_week", "order_index", name="uq_activity_day_order"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id: Mapped[str] = mapped_column(String, ForeignKey("schedule_templates.id"), index=True, nullable=False)

    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str] = mapped_column(Text, nullable=False, default="")

    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    scoring: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    template: Mapped[ScheduleTemplate] = relationship(back_populates="activities")

    @property
    def points_on_completion(self) -> int:
        return int((self.scoring or {}).get("points_on_completion", 0))
