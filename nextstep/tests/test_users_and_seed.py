"""User upsert, Clerk profile enrichment and the demo seed."""
from unittest.mock import MagicMock, patch

import httpx

from nextstep.core.auth import Identity
from nextstep.features.entitlements.service import get_status
from nextstep.features.goals.service import list_goals
from nextstep.features.recommendations.service import get_history
from nextstep.features.users import service as users_service
from nextstep.features.users.service import (
    find_user_by_email,
    get_user,
    set_stripe_customer_id,
    sync_user_from_identity,
    upsert_user,
)
from nextstep.scripts.seed import DEMO_USER_ID, seed


def test_upsert_refreshes_profile_but_keeps_created_at():
    first = upsert_user(Identity(user_id="user_fay", email="fay@example.com", display_name="Fay"))
    second = upsert_user(Identity(user_id="user_fay", email="fay@new.example.com"))

    assert second["created_at"] == first["created_at"]
    assert second["email"] == "fay@new.example.com"
    assert second["display_name"] == "Fay"
    assert find_user_by_email("FAY@NEW.EXAMPLE.COM")["user_id"] == "user_fay"


def test_new_subject_takes_over_email_from_stale_row():
    upsert_user(Identity(user_id="user_ivy_v1", email="Ivy@example.com"))
    set_stripe_customer_id("user_ivy_v1", "cus_ivy")

    user = upsert_user(Identity(user_id="user_ivy_v2", email="ivy@example.com"))

    assert user["email"] == "ivy@example.com"
    assert find_user_by_email("ivy@example.com")["user_id"] == "user_ivy_v2"
    stale = get_user("user_ivy_v1")
    assert stale["email"] is None
    assert stale["stripe_customer_id"] == "cus_ivy"


def test_changing_to_an_address_another_row_holds():
    upsert_user(Identity(user_id="user_jo", email="jo@example.com"))
    upsert_user(Identity(user_id="user_kim", email="kim@example.com"))

    user = upsert_user(Identity(user_id="user_kim", email="jo@example.com"))

    assert user["email"] == "jo@example.com"
    assert get_user("user_jo")["email"] is None


def test_missing_email_filled_from_clerk(monkeypatch):
    monkeypatch.setattr(users_service.settings, "CLERK_API_URL", "https://api.clerk.test/v1")
    monkeypatch.setattr(users_service.settings, "CLERK_SECRET_KEY", "sk_clerk")
    response = MagicMock()
    response.json.return_value = {
        "primary_email_address_id": "e2",
        "email_addresses": [
            {"id": "e1", "email_address": "old@example.com"},
            {"id": "e2", "email_address": "gus@example.com"},
        ],
        "first_name": "Gus",
        "last_name": None,
    }

    with patch.object(users_service.httpx, "get", return_value=response) as get:
        user = sync_user_from_identity(Identity(user_id="user_gus"))

    assert get.call_args.args[0] == "https://api.clerk.test/v1/users/user_gus"
    assert user["email"] == "gus@example.com"
    assert user["display_name"] == "Gus"


def test_clerk_failure_falls_back_to_token_identity(monkeypatch):
    monkeypatch.setattr(users_service.settings, "CLERK_API_URL", "https://api.clerk.test/v1")
    monkeypatch.setattr(users_service.settings, "CLERK_SECRET_KEY", "sk_clerk")

    with patch.object(users_service.httpx, "get", side_effect=httpx.ConnectError("down")):
        user = sync_user_from_identity(Identity(user_id="user_hal", display_name="Hal"))

    assert user["email"] is None
    assert user["display_name"] == "Hal"


def test_seed_is_rerunnable():
    seed()
    seed()

    goals = list_goals(DEMO_USER_ID)
    assert [g.title for g in goals] == ["Learn Prisma", "Build Next Action App"]
    history = get_history(DEMO_USER_ID)
    assert len(history) == 1
    assert history[0].steps == ["Go to prisma.io", "Read Quickstart", "Try example"]
    assert get_status(DEMO_USER_ID).usage_count == 0
