from datetime import datetime

from pydantic import BaseModel


class ProgressCache(BaseModel):
    completed_activities: int = 0
    total_activities: int = 0
    completion_percentage: int = 0
    points_earned: int = 0
    streak_weeks: int = 0
    last_updated_at: str | None = None


class InstanceResponse(BaseModel):
    id: str
    template_id: str
    template_lineage_id: str
    template_version: int
    student_id: str
    professional_id: str
    status: str  # active | paused | completed
    current_week_number: int
    current_week_start_date: datetime
    current_week_end_date: datetime
    started_at: datetime
    completed_at: datetime | None = None
    progress_cache: ProgressCache
    lifetime_completed: int
    lifetime_points: int


class InstanceListResponse(BaseModel):
    instances: list[InstanceResponse]


class SnapshotResponse(BaseModel):
    id: str
    schedule_instance_id: str
    week_number: int
    week_start_date: datetime
    week_end_date: datetime
    engagement: dict
    performance: dict
    activity_type_analysis: dict
    daily_breakdown: dict
    insights: dict
    streak_weeks: int
    generated_by: str
    created_at: datetime


class SnapshotListResponse(BaseModel):
    schedule_instance_id: str
    snapshots: list[SnapshotResponse]
