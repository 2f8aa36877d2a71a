#!/usr/bin/env python3
"""
Demo data seeder.

Creates a demo user on the FREE plan with two goals and one stored
recommendation. Re-runnable: the demo user's rows are removed first.

Usage:
    python -m nextstep.scripts.seed [--database-url sqlite:///nextstep.db]
"""
import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import delete, insert

from nextstep.core.database import (
    create_all_tables,
    entitlements,
    feedback,
    get_db_session,
    goals,
    init_engine,
    recommendations,
    users,
)
from nextstep.models.entitlement import EntitlementState, Plan

DEMO_USER_ID = "user_demo"
DEMO_EMAIL = "demo@example.com"


def seed() -> dict:
    now = datetime.now(timezone.utc)
    prisma_goal_id = str(uuid4())
    app_goal_id = str(uuid4())
    action_id = str(uuid4())

    action = {
        "title": "Read Prisma Docs",
        "why_this": "You need to understand the basics first.",
        "steps": ["Go to prisma.io", "Read Quickstart", "Try example"],
        "time_minutes": 30,
        "difficulty": 2,
        "success_criteria": "Run first query",
        "fallback_if_stuck": "Watch YouTube tutorial",
    }

    with get_db_session() as session:
        for table in (feedback, recommendations, goals, entitlements):
            session.execute(delete(table).where(table.c.user_id == DEMO_USER_ID))
        session.execute(delete(users).where(users.c.user_id == DEMO_USER_ID))

        session.execute(
            insert(users).values(
                user_id=DEMO_USER_ID,
                email=DEMO_EMAIL,
                display_name="Demo User",
                created_at=now,
                updated_at=now,
            )
        )
        session.execute(
            insert(entitlements).values(
                user_id=DEMO_USER_ID,
                plan=Plan.FREE.value,
                status=EntitlementState.ACTIVE.value,
                usage_count=0,
            )
        )
        session.execute(
            insert(goals),
            [
                {
                    "id": prisma_goal_id,
                    "user_id": DEMO_USER_ID,
                    "title": "Learn Prisma",
                    "description": "Master the ORM",
                    "priority": 5,
                    "deadline": now + timedelta(days=7),
                    "created_at": now,
                },
                {
                    "id": app_goal_id,
                    "user_id": DEMO_USER_ID,
                    "title": "Build Next Action App",
                    "description": "Finish the MVP",
                    "priority": 4,
                    "deadline": None,
                    "created_at": now,
                },
            ],
        )
        session.execute(
            insert(recommendations).values(
                id=action_id,
                user_id=DEMO_USER_ID,
                goal_id=prisma_goal_id,
                raw_json=json.dumps(action),
                model_used="seed",
                attempts=1,
                created_at=now,
                **action,
            )
        )

    return {"user_id": DEMO_USER_ID, "goals": 2, "recommendations": 1}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed NextStep demo data")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)

    try:
        init_engine(args.database_url)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    create_all_tables()
    result = seed()
    print(f"Seeded {result['user_id']}: {result['goals']} goals, {result['recommendations']} recommendation")
    return 0


if __name__ == "__main__":
    sys.exit(main())
