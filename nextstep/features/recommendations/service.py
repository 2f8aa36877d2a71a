"""
Next-action recommendation service.

Generation runs NOT_STARTED -> ATTEMPT_IN_FLIGHT(n) -> VALIDATED -> PERSISTED,
or ends in FAILED once the second attempt also fails validation. A failed
attempt's validation error is fed back to the model on the retry. Nothing is
written on the failure path.

Storage calls are synchronous SQLAlchemy and run in the threadpool so the
event loop only ever waits on I/O.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

import groq
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, insert
from starlette.concurrency import run_in_threadpool

from nextstep.core.database import as_utc, get_db_session, recommendations, feedback
from nextstep.core.errors import GenerationError, NotFoundError
from nextstep.core.logging import log_event
from nextstep.features.goals.service import list_goals
from nextstep.features.recommendations.llm import ChatClient
from nextstep.features.recommendations.prompts import build_messages
from nextstep.features.recommendations.schemas import (
    GoalInput,
    LLMActionResponse,
    NextActionInput,
)
from nextstep.models.recommendation import Feedback, FeedbackType, Recommendation

logger = logging.getLogger("nextstep")

MAX_ATTEMPTS = 2
HISTORY_LIMIT = 20


class GenerationState(str, Enum):
    NOT_STARTED = "not_started"
    ATTEMPT_IN_FLIGHT = "attempt_in_flight"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    FAILED = "failed"


def describe_validation_error(exc: Exception) -> str:
    """One-line description of why a model response was rejected."""
    if isinstance(exc, PydanticValidationError):
        parts = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "response"
            parts.append(f"{loc}: {err.get('msg')}")
        return "; ".join(parts)
    if isinstance(exc, json.JSONDecodeError):
        return f"response is not valid JSON ({exc.msg})"
    return str(exc) or exc.__class__.__name__


def parse_action(raw: str) -> LLMActionResponse:
    """Parse and validate raw model output. Raises ValueError subclasses."""
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("response must be a JSON object")
    return LLMActionResponse.model_validate(payload)


def _row_to_recommendation(row) -> Recommendation:
    return Recommendation(
        id=row.id,
        user_id=row.user_id,
        goal_id=row.goal_id,
        title=row.title,
        why_this=row.why_this,
        steps=list(row.steps),
        time_minutes=row.time_minutes,
        difficulty=row.difficulty,
        success_criteria=row.success_criteria,
        fallback_if_stuck=row.fallback_if_stuck,
        raw_json=row.raw_json,
        model_used=row.model_used,
        attempts=row.attempts,
        created_at=as_utc(row.created_at),
    )


def resolve_goals(user_id: str, data: NextActionInput) -> List[GoalInput]:
    """Caller-supplied goals when non-empty, else every goal the user owns."""
    if data.goals:
        return list(data.goals)
    return [
        GoalInput(
            id=goal.id,
            title=goal.title,
            description=goal.description,
            priority=goal.priority,
            deadline=goal.deadline.isoformat() if goal.deadline else None,
        )
        for goal in list_goals(user_id)
    ]


def save_recommendation(
    user_id: str,
    action: LLMActionResponse,
    *,
    raw_json: str,
    model_used: str,
    attempts: int,
) -> Recommendation:
    # goal_id is never inferred: the model does not report which goal it picked
    record = Recommendation(
        id=str(uuid4()),
        user_id=user_id,
        goal_id=None,
        title=action.title,
        why_this=action.why_this,
        steps=list(action.steps),
        time_minutes=action.time_minutes,
        difficulty=action.difficulty,
        success_criteria=action.success_criteria,
        fallback_if_stuck=action.fallback_if_stuck,
        raw_json=raw_json,
        model_used=model_used,
        attempts=attempts,
        created_at=datetime.now(timezone.utc),
    )
    with get_db_session() as session:
        session.execute(insert(recommendations).values(**record.model_dump()))
    return record


class RecommendationGenerator:
    """Builds the prompt, calls the model, validates, retries once, persists."""

    def __init__(self, llm: ChatClient, max_attempts: int = MAX_ATTEMPTS):
        self.llm = llm
        self.max_attempts = max_attempts

    async def generate(self, user_id: str, data: NextActionInput) -> Recommendation:
        state = GenerationState.NOT_STARTED
        goals = await run_in_threadpool(resolve_goals, user_id, data)

        last_error: Optional[str] = None
        for attempt in range(1, self.max_attempts + 1):
            state = GenerationState.ATTEMPT_IN_FLIGHT
            messages = build_messages(data, goals, last_error if attempt > 1 else None)

            try:
                raw = await self.llm.complete_json(messages)
            except groq.APIError as e:
                log_event(
                    "error",
                    "recommendation.llm_error",
                    user_id=user_id,
                    error_code="llm_error",
                    extra={"attempt": attempt, "error": e},
                )
                raise GenerationError("Text generation service failed") from e

            try:
                action = parse_action(raw)
            except (ValueError, PydanticValidationError) as e:
                last_error = describe_validation_error(e)
                log_event(
                    "warning",
                    "recommendation.invalid_response",
                    user_id=user_id,
                    error_code="invalid_response",
                    extra={"attempt": attempt, "error": last_error, "state": state.value},
                )
                continue

            state = GenerationState.VALIDATED
            record = await run_in_threadpool(
                save_recommendation,
                user_id,
                action,
                raw_json=raw,
                model_used=self.llm.model,
                attempts=attempt,
            )
            state = GenerationState.PERSISTED
            log_event(
                "info",
                "recommendation.generated",
                user_id=user_id,
                extra={"recommendation_id": record.id, "attempts": attempt, "state": state.value},
            )
            return record

        state = GenerationState.FAILED
        log_event(
            "error",
            "recommendation.failed",
            user_id=user_id,
            error_code="generation_failed",
            extra={"attempts": self.max_attempts, "error": last_error, "state": state.value},
        )
        raise GenerationError(
            f"Failed to generate valid action after {self.max_attempts} attempts. "
            f"Last error: {last_error}"
        )


def get_history(user_id: str, limit: int = HISTORY_LIMIT) -> List[Recommendation]:
    """Latest recommendations for the user, newest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(recommendations)
            .where(recommendations.c.user_id == user_id)
            .order_by(recommendations.c.created_at.desc())
            .limit(limit)
        ).all()
        return [_row_to_recommendation(row) for row in rows]


def get_recommendation(recommendation_id: str) -> Optional[Recommendation]:
    with get_db_session() as session:
        row = session.execute(
            select(recommendations).where(recommendations.c.id == recommendation_id)
        ).first()
        return _row_to_recommendation(row) if row else None


def submit_feedback(
    user_id: str,
    action_id: str,
    type: FeedbackType,
    note: Optional[str] = None,
) -> Feedback:
    """
    Record feedback on one of the caller's recommendations.

    Raises:
        NotFoundError (404): unknown action, or an action owned by someone
        else (existence of other users' actions is not revealed)
    """
    action = get_recommendation(action_id)
    if action is None or action.user_id != user_id:
        raise NotFoundError("Action not found")

    record = Feedback(
        id=str(uuid4()),
        user_id=user_id,
        action_id=action_id,
        type=type,
        note=note,
        created_at=datetime.now(timezone.utc),
    )
    with get_db_session() as session:
        session.execute(
            insert(feedback).values(
                id=record.id,
                user_id=record.user_id,
                action_id=record.action_id,
                type=record.type.value,
                note=record.note,
                created_at=record.created_at,
            )
        )
    return record
