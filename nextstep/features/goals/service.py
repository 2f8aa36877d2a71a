"""
Goal storage: the input the next-action generator reasons over.
- list_goals(user_id)
- create_goal(user_id, data)
- delete_goal(user_id, goal_id)
"""

from datetime import datetime, timezone
from typing import List
from uuid import uuid4

from sqlalchemy import select, insert, delete

from nextstep.core.database import as_utc, get_db_session, goals
from nextstep.core.errors import NotFoundError
from nextstep.features.recommendations.schemas import GoalCreate
from nextstep.models.goal import Goal


def _row_to_goal(row) -> Goal:
    return Goal(
        id=row.id,
        title=row.title,
        description=row.description or "",
        priority=row.priority,
        deadline=as_utc(row.deadline),
        created_at=as_utc(row.created_at),
    )


def list_goals(user_id: str) -> List[Goal]:
    with get_db_session() as session:
        rows = session.execute(
            select(goals)
            .where(goals.c.user_id == user_id)
            .order_by(goals.c.priority.desc(), goals.c.created_at)
        ).all()
        return [_row_to_goal(row) for row in rows]


def create_goal(user_id: str, data: GoalCreate) -> Goal:
    goal_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(goals).values(
                id=goal_id,
                user_id=user_id,
                title=data.title.strip(),
                description=data.description,
                priority=data.priority,
                deadline=data.deadline,
                created_at=datetime.now(timezone.utc),
            )
        )
        row = session.execute(select(goals).where(goals.c.id == goal_id)).first()
        return _row_to_goal(row)


def delete_goal(user_id: str, goal_id: str) -> None:
    with get_db_session() as session:
        result = session.execute(
            delete(goals).where(goals.c.id == goal_id).where(goals.c.user_id == user_id)
        )
        if result.rowcount == 0:
            raise NotFoundError("Goal not found")
