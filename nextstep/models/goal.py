from datetime import datetime
from typing import Optional

from nextstep.models.base import ApiModel


class Goal(ApiModel):
    id: str
    title: str
    description: str = ""
    priority: int
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
