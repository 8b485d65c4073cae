from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class QuickConfig(BaseModel):
    requires_confirmation: bool = False
    auto_complete: bool = False


class AppConfig(BaseModel):
    requires_confirmation: bool = False
    auto_complete: bool = False


class TextConfig(BaseModel):
    min_words: int = Field(0, ge=0)
    max_words: int | None = Field(None, ge=1)
    format: Literal["plain", "markdown"] = "plain"


class QuizQuestion(BaseModel):
    id: str
    question: str
    type: Literal["multiple_choice", "true_false", "short_answer"] = "multiple_choice"
    options: list[str] = Field(default_factory=list)
    correct_answer: str | list[str]
    points: int = Field(1, ge=0)


class QuizConfig(BaseModel):
    questions: list[QuizQuestion] = Field(..., min_length=1)
    passing_score: int = Field(70, ge=0, le=100)  # percent
    max_attempts: int | None = Field(None, ge=1)


class VideoConfig(BaseModel):
    url: str = Field(..., pattern=r"^https?://")
    provider: Literal["youtube", "vimeo", "custom"] = "custom"
    require_watch_percentage: int = Field(0, ge=0, le=100)


class ChecklistItem(BaseModel):
    id: str
    label: str
    required: bool = True


class ChecklistConfig(BaseModel):
    items: list[ChecklistItem] = Field(..., min_length=1)


class FileConfig(BaseModel):
    allowed_types: list[str] = Field(default_factory=list)  # e.g. ["pdf", "png"]; empty = anything
    max_size_mb: float = Field(10, gt=0)
    max_files: int | None = Field(None, ge=1)


ActivityConfig = Union[QuickConfig, AppConfig, TextConfig, QuizConfig, VideoConfig, ChecklistConfig, FileConfig]


class ActivityScoring(BaseModel):
    is_required: bool = True
    points_on_completion: int = 10
    bonus_points: int = 0


class ActivityMetadata(BaseModel):
    estimated_duration: int = 15  # minutes
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    therapeutic_focus: list[str] = Field(default_factory=list)
    educational_focus: list[str] = Field(default_factory=list)


class ActivityBase(BaseModel):
    day_of_week: int
    order_index: int = 0
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    instructions: str = ""
    scoring: ActivityScoring = Field(default_factory=ActivityScoring)
    metadata: ActivityMetadata = Field(default_factory=ActivityMetadata)


class QuickActivity(ActivityBase):
    type: Literal["quick"] = "quick"
    config: QuickConfig = Field(default_factory=QuickConfig)


class AppActivity(ActivityBase):
    type: Literal["app"] = "app"
    config: AppConfig = Field(default_factory=AppConfig)


class TextActivity(ActivityBase):
    type: Literal["text"] = "text"
    config: TextConfig = Field(default_factory=TextConfig)


class QuizActivity(ActivityBase):
    type: Literal["quiz"] = "quiz"
    config: QuizConfig


class VideoActivity(ActivityBase):
    type: Literal["video"] = "video"
    config: VideoConfig


class ChecklistActivity(ActivityBase):
    type: Literal["checklist"] = "checklist"
    config: ChecklistConfig


class FileActivity(ActivityBase):
    type: Literal["file"] = "file"
    config: FileConfig = Field(default_factory=FileConfig)


ActivityIn = Annotated[
    Union[QuickActivity, AppActivity, TextActivity, QuizActivity, VideoActivity, ChecklistActivity, FileActivity],
    Field(discriminator="type"),
]

activity_adapter: TypeAdapter = TypeAdapter(ActivityIn)


def parse_activity(data: dict) -> ActivityBase:
    """Rebuild a typed activity from a stored snapshot / catalog row dict."""
    return activity_adapter.validate_python(data)
