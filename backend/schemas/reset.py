from pydantic import BaseModel, Field


class ResetRequest(BaseModel):
    dry_run: bool = False
    batch_size: int | None = Field(None, ge=1, le=500)
    instance_ids: list[str] | None = None


class ResetOutcome(BaseModel):
    id: str
    old_week: int
    new_week: int
    snapshot_id: str | None = None
    new_activities: int = 0
    completed: bool = False


class ResetIssue(BaseModel):
    id: str
    reason: str
    error_type: str | None = None


class SnapshotPreview(BaseModel):
    id: str
    week_number: int
    completion_rate: int
    streak_weeks: int
    challenges: list[str]


class ResetResponse(BaseModel):
    processed_instances: int = Field(serialization_alias="processedInstances")
    generated_snapshots: int = Field(serialization_alias="generatedSnapshots")
    errors: list[str]
    dry_run: bool = Field(serialization_alias="dryRun")
    successful: list[ResetOutcome]
    skipped: list[ResetIssue]
    failed: list[ResetIssue]
    previews: list[SnapshotPreview]
