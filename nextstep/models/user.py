from datetime import datetime
from typing import Optional

from nextstep.models.base import ApiModel


class User(ApiModel):
    """Profile as returned by GET /me."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict) -> "User":
        return cls(
            id=record["user_id"],
            email=record["email"],
            name=record["display_name"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )
