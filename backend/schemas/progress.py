from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ProgressItem(BaseModel):
    id: str
    schedule_instance_id: str
    activity_id: str
    week_number: int
    day_of_week: int
    scheduled_date: datetime
    status: str  # pending | in_progress | completed | skipped
    title: str
    type: str
    points_earned: int
    execution_data: dict
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ProgressListResponse(BaseModel):
    items: list[ProgressItem]


class EmotionalState(BaseModel):
    before: int | None = Field(None, ge=1, le=5)
    after: int | None = Field(None, ge=1, le=5)


class CompleteRequest(BaseModel):
    time_spent: int | None = Field(None, ge=0, le=24 * 60)  # minutes
    notes: str | None = None
    emotional_state: EmotionalState | None = None
    # Per-type payload: text, checked_items, watched_percentage, files, answers/score...
    submission: dict[str, Any] = Field(default_factory=dict)


class SkipRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class DraftRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


class QuizSubmitRequest(BaseModel):
    answers: dict[str, Any]


class QuizResult(BaseModel):
    score: int
    total_questions: int
    correct_answers: int
    passed: bool
    attempt_number: int
    progress: ProgressItem
