"""
Plan synchronizer: Stripe lifecycle events -> entitlement plan/status.
"""
from datetime import datetime, timezone

from nextstep.core.auth import Identity
from nextstep.features.billing.provider import BillingEvent
from nextstep.features.billing.sync import (
    CHECKOUT_COMPLETED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    apply_event,
    resolve_customer_user,
)
from nextstep.features.entitlements.service import get_entitlement, set_plan
from nextstep.features.users.service import get_user, upsert_user
from nextstep.models.entitlement import EntitlementState, Plan
from nextstep.tests.mocks import FakeBillingProvider

PERIOD_END_TS = 1893456000  # 2030-01-01T00:00:00Z


def make_user(user_id="user_bob", email="bob@example.com"):
    return upsert_user(Identity(user_id=user_id, email=email, display_name="Bob"))


def test_checkout_completed_upgrades_user_from_metadata():
    make_user()
    provider = FakeBillingProvider()
    event = BillingEvent(
        event_id="evt_checkout_1",
        event_type=CHECKOUT_COMPLETED,
        data={"metadata": {"userId": "user_bob"}, "customer": "cus_bob"},
    )

    result = apply_event(event, provider)

    assert result.outcome == "applied"
    assert result.plan == Plan.PRO
    ent = get_entitlement("user_bob")
    assert ent.plan == Plan.PRO
    assert ent.status == EntitlementState.ACTIVE
    assert get_user("user_bob")["stripe_customer_id"] == "cus_bob"


def test_checkout_completed_falls_back_to_client_reference_id():
    provider = FakeBillingProvider()
    event = BillingEvent(
        event_id="evt_checkout_2",
        event_type=CHECKOUT_COMPLETED,
        data={"client_reference_id": "user_new", "metadata": {}},
    )

    result = apply_event(event, provider)

    assert result.outcome == "applied"
    assert get_entitlement("user_new").plan == Plan.PRO


def test_subscription_updated_active_sets_pro_and_period_end():
    make_user()
    provider = FakeBillingProvider(customers={"cus_bob": "bob@example.com"})
    event = BillingEvent(
        event_id="evt_sub_upd",
        event_type=SUBSCRIPTION_UPDATED,
        data={"customer": "cus_bob", "status": "active", "current_period_end": PERIOD_END_TS},
    )

    apply_event(event, provider)

    ent = get_entitlement("user_bob")
    assert ent.plan == Plan.PRO
    assert ent.status == EntitlementState.ACTIVE
    assert ent.period_end == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_subscription_updated_past_due_downgrades():
    make_user()
    set_plan("user_bob", Plan.PRO, EntitlementState.ACTIVE)
    provider = FakeBillingProvider(customers={"cus_bob": "bob@example.com"})
    event = BillingEvent(
        event_id="evt_sub_past_due",
        event_type=SUBSCRIPTION_UPDATED,
        data={
            "customer": "cus_bob",
            "status": "past_due",
            "items": {"data": [{"current_period_end": PERIOD_END_TS}]},
        },
    )

    apply_event(event, provider)

    ent = get_entitlement("user_bob")
    assert ent.plan == Plan.FREE
    assert ent.status == EntitlementState.INACTIVE
    assert ent.period_end == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_subscription_deleted_twice_converges():
    make_user()
    set_plan("user_bob", Plan.PRO, EntitlementState.ACTIVE)
    provider = FakeBillingProvider(customers={"cus_bob": "bob@example.com"})
    event = BillingEvent(
        event_id="evt_sub_del",
        event_type=SUBSCRIPTION_DELETED,
        data={"customer": "cus_bob", "status": "canceled"},
    )

    apply_event(event, provider)
    after_first = get_entitlement("user_bob")
    apply_event(event, provider)
    after_second = get_entitlement("user_bob")

    assert after_first == after_second
    assert after_second.plan == Plan.FREE
    assert after_second.status == EntitlementState.INACTIVE


def test_unresolvable_customer_is_dropped():
    provider = FakeBillingProvider(customers={"cus_ghost": "ghost@example.com"})
    event = BillingEvent(
        event_id="evt_ghost",
        event_type=SUBSCRIPTION_DELETED,
        data={"customer": "cus_ghost"},
    )

    result = apply_event(event, provider)

    assert result.outcome == "user_not_found"
    assert get_entitlement("cus_ghost") is None


def test_unknown_event_type_ignored():
    result = apply_event(BillingEvent("evt_x", "invoice.paid", {}), FakeBillingProvider())
    assert result.outcome == "ignored"


def test_resolve_prefers_stored_customer_id_and_remembers_email_match():
    make_user(email="Bob@Example.com")
    provider = FakeBillingProvider(customers={"cus_bob": "bob@example.com"})

    # First resolution goes through the (case-insensitive) email lookup
    assert resolve_customer_user("cus_bob", provider) == "user_bob"
    assert get_user("user_bob")["stripe_customer_id"] == "cus_bob"

    # Stored id now wins even if Stripe's email changes
    provider.customers["cus_bob"] = "renamed@example.com"
    assert resolve_customer_user("cus_bob", provider) == "user_bob"
    assert resolve_customer_user(None, provider) is None
