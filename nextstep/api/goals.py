"""Goal CRUD for the caller."""

from typing import List

from fastapi import APIRouter, Depends, Response

from nextstep.api.deps import require_user
from nextstep.features.goals.service import create_goal, delete_goal, list_goals
from nextstep.features.recommendations.schemas import GoalCreate
from nextstep.models.goal import Goal

router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", response_model=List[Goal])
def get_goals(user: dict = Depends(require_user)):
    return list_goals(user["user_id"])


@router.post("", response_model=Goal, status_code=201)
def post_goal(data: GoalCreate, user: dict = Depends(require_user)):
    return create_goal(user["user_id"], data)


@router.delete("/{goal_id}", status_code=204)
def remove_goal(goal_id: str, user: dict = Depends(require_user)):
    delete_goal(user["user_id"], goal_id)
    return Response(status_code=204)
