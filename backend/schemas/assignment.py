from pydantic import BaseModel, Field


class AssignRequest(BaseModel):
    student_ids: list[str] = Field(..., min_length=1, max_length=500)


class AssignmentSuccess(BaseModel):
    student_id: str
    instance_id: str
    activities_created: int


class AssignmentFailure(BaseModel):
    student_id: str
    reason: str
    error_type: str


class AssignmentResult(BaseModel):
    template_id: str
    successful: list[AssignmentSuccess] = Field(default_factory=list)
    failed: list[AssignmentFailure] = Field(default_factory=list)
