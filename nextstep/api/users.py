"""Current user profile."""

from fastapi import APIRouter, Depends

from nextstep.api.deps import require_user
from nextstep.models.user import User

router = APIRouter(tags=["users"])


@router.get("/me", response_model=User)
def get_me(user: dict = Depends(require_user)):
    return User.from_record(user)
