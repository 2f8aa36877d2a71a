"""
Next-action routes.

- POST /next-action: quota-gated recommendation generation
- GET  /history: latest recommendations, newest first
- POST /feedback: feedback on one of the caller's recommendations
"""

from typing import List

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from nextstep.api.deps import get_chat_client, require_user
from nextstep.features.entitlements.service import admit_or_raise
from nextstep.features.recommendations.llm import ChatClient
from nextstep.features.recommendations.schemas import FeedbackInput, NextActionInput
from nextstep.features.recommendations.service import (
    RecommendationGenerator,
    get_history,
    submit_feedback,
)
from nextstep.models.recommendation import Feedback, Recommendation

router = APIRouter(tags=["actions"])


@router.post("/next-action", response_model=Recommendation)
async def create_next_action(
    data: NextActionInput,
    user: dict = Depends(require_user),
    llm: ChatClient = Depends(get_chat_client),
):
    """
    Generate and store the single next action for the caller.

    The body is validated before admission, so a malformed request never
    uses up quota. A generation failure after admission still counts.

    Errors:
        400: invalid body
        401: missing/invalid token
        403: daily quota exhausted (FREE plan)
        500: model never produced a valid action
        503: text generation not configured
    """
    await run_in_threadpool(admit_or_raise, user["user_id"])
    generator = RecommendationGenerator(llm)
    return await generator.generate(user["user_id"], data)


@router.get("/history", response_model=List[Recommendation])
def list_history(user: dict = Depends(require_user)):
    return get_history(user["user_id"])


@router.post("/feedback", response_model=Feedback)
def create_feedback(data: FeedbackInput, user: dict = Depends(require_user)):
    return submit_feedback(user["user_id"], data.action_id, data.type, data.note)
