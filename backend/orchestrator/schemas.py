from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.state import InterviewMode, QuestionType


class StartSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: InterviewMode
    user_name: str = Field(alias="userName", min_length=1)
    topics: list[str] = Field(min_length=1)


class ProctoringSignal(BaseModel):
    signal: Literal["visibility", "fullscreen", "fullscreen-request"]
    hidden: bool = False
    is_fullscreen: bool = Field(default=False, alias="isFullscreen")
    ok: bool = True
    error: str = ""

    model_config = ConfigDict(populate_by_name=True)


class StartRoundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(min_length=1)
    question_type: QuestionType = Field(default=QuestionType.MCQ, alias="questionType")


class CompleteRoundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: float = Field(ge=0)
    max_score: float = Field(alias="maxScore", ge=0)
    round_index: int | None = Field(default=None, alias="roundIndex", ge=0)


class EventOutcomeResponse(BaseModel):
    status: str
    event: str
    event_id: str | None = None
    reason: str = ""
    progress: str | None = None


class ContextResponse(BaseModel):
    session_id: str | None = None
    mode: str | None = None
    context: str
