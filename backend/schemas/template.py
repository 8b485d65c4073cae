from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from schemas.activity import ActivityIn

Category = Literal["therapeutic", "educational", "mixed"]


class RepeatRules(BaseModel):
    reset_on_repeat: bool = True


class TemplateCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: str | None = None
    category: Category = "mixed"
    active_days: list[int] = Field(default_factory=list)  # 0 = Sunday .. 6 = Saturday
    repeat_rules: RepeatRules = Field(default_factory=RepeatRules)
    start_date: date
    end_date: date
    tags: list[str] = Field(default_factory=list)
    activities: list[ActivityIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    # Every field is optional; anything left out is carried over from the forked version.
    name: str | None = Field(None, max_length=200)
    description: str | None = None
    category: Category | None = None
    active_days: list[int] | None = None
    repeat_rules: RepeatRules | None = None
    start_date: date | None = None
    end_date: date | None = None
    tags: list[str] | None = None
    activities: list[ActivityIn] | None = None


class ActivityResponse(BaseModel):
    id: str
    template_id: str
    day_of_week: int
    order_index: int
    type: str
    title: str
    description: str | None = None
    instructions: str
    config: dict
    scoring: dict
    metadata: dict


class TemplateResponse(BaseModel):
    id: str
    lineage_id: str
    version: int
    owner_id: str
    name: str
    description: str | None = None
    category: str
    active_days: list[int]
    repeat_rules: dict
    tags: list[str]
    start_date: date
    end_date: date
    is_active: bool
    superseded_by_id: str | None = None
    created_at: datetime
    activity_count: int = 0


class TemplateDetailResponse(TemplateResponse):
    activities: list[ActivityResponse]


class TemplateListResponse(BaseModel):
    templates: list[TemplateResponse]
