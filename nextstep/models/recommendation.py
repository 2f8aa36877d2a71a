"""
nextstep/models/recommendation.py

Persisted recommendation ("next action") and feedback records.
Both are immutable once written.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict

from nextstep.models.base import ApiModel


class FeedbackType(str, Enum):
    DONE = "DONE"
    TOO_HARD = "TOO_HARD"
    NOT_RELEVANT = "NOT_RELEVANT"
    RETRY = "RETRY"


class Recommendation(ApiModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    goal_id: Optional[str] = None
    title: str
    why_this: str
    steps: List[str]
    time_minutes: int
    difficulty: int
    success_criteria: str
    fallback_if_stuck: str
    raw_json: str
    model_used: str
    attempts: int
    created_at: datetime


class Feedback(ApiModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    action_id: str
    type: FeedbackType
    note: Optional[str] = None
    created_at: datetime
