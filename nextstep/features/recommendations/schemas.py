"""Request bodies and the model output contract for next-action generation."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nextstep.models.base import ApiModel
from nextstep.models.recommendation import FeedbackType


class Context(str, Enum):
    HOME = "HOME"
    WORK = "WORK"
    OUTSIDE = "OUTSIDE"


class GoalInput(ApiModel):
    id: str
    title: str
    description: str
    priority: int
    deadline: Optional[str] = None


class NextActionInput(ApiModel):
    available_minutes: int = Field(ge=5, le=1440)
    energy: int = Field(ge=1, le=5)
    context: Context
    goals: Optional[List[GoalInput]] = None


class FeedbackInput(ApiModel):
    action_id: str = Field(min_length=1)
    type: FeedbackType
    note: Optional[str] = None


class GoalCreate(ApiModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    priority: int = Field(default=3, ge=1, le=5)
    deadline: Optional[datetime] = None


class LLMActionResponse(BaseModel):
    """Shape the model must return. Field names match the prompt, not the API."""
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    why_this: str
    steps: List[str] = Field(min_length=3, max_length=6)
    # strict: JSON booleans, floats and numeric strings are rejected
    time_minutes: int = Field(strict=True, gt=0)
    difficulty: int = Field(strict=True, ge=1, le=5)
    success_criteria: str
    fallback_if_stuck: str

    @field_validator("steps")
    @classmethod
    def steps_not_blank(cls, value: List[str]) -> List[str]:
        if any(not step.strip() for step in value):
            raise ValueError("steps must not contain blank entries")
        return value
