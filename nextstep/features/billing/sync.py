"""
Plan synchronizer: applies Stripe subscription lifecycle events to entitlements.

Handled event types:
- checkout.session.completed      -> PRO / ACTIVE (user from metadata.userId
                                     or client_reference_id)
- customer.subscription.updated   -> PRO / ACTIVE when Stripe reports
                                     "active", else FREE / INACTIVE; stores
                                     current_period_end
- customer.subscription.deleted   -> FREE / INACTIVE

Every handler is a set-to-value write, so at-least-once redelivery
converges. Events whose user cannot be resolved are logged and dropped:
Stripe would keep redelivering on a non-2xx and the lookup would never
succeed.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from nextstep.core.logging import log_event
from nextstep.features.billing.provider import BillingEvent, BillingProvider
from nextstep.features.entitlements.service import set_plan
from nextstep.features.users.service import (
    ensure_user,
    find_user_by_customer_id,
    find_user_by_email,
    set_stripe_customer_id,
)
from nextstep.models.entitlement import EntitlementState, Plan

logger = logging.getLogger("nextstep")

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass(frozen=True)
class SyncOutcome:
    """What a delivery did: applied, user_not_found, ignored or duplicate."""
    outcome: str
    user_id: Optional[str] = None
    plan: Optional[Plan] = None


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    ts = subscription.get("current_period_end")
    if ts is None:
        # Newer API versions carry the period on the subscription items
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            ts = items[0].get("current_period_end")
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def resolve_customer_user(customer_id: Optional[str], provider: BillingProvider) -> Optional[str]:
    """
    Map a Stripe customer to a user id.

    The stored stripe_customer_id is tried first; the customer's email is
    the fallback join key.
    """
    if not customer_id:
        return None

    user = find_user_by_customer_id(customer_id)
    if user:
        return user["user_id"]

    email = provider.retrieve_customer_email(customer_id)
    user = find_user_by_email(email)
    if user:
        if not user.get("stripe_customer_id"):
            set_stripe_customer_id(user["user_id"], customer_id)
        return user["user_id"]
    return None


def _on_checkout_completed(event: BillingEvent, provider: BillingProvider) -> SyncOutcome:
    session = event.data
    user_id = (session.get("metadata") or {}).get("userId") or session.get("client_reference_id")
    if not user_id:
        return SyncOutcome("user_not_found")

    ensure_user(user_id)
    customer_id = session.get("customer")
    if customer_id:
        set_stripe_customer_id(user_id, customer_id)

    set_plan(user_id, Plan.PRO, EntitlementState.ACTIVE)
    return SyncOutcome("applied", user_id=user_id, plan=Plan.PRO)


def _on_subscription_updated(event: BillingEvent, provider: BillingProvider) -> SyncOutcome:
    subscription = event.data
    user_id = resolve_customer_user(subscription.get("customer"), provider)
    if not user_id:
        return SyncOutcome("user_not_found")

    if subscription.get("status") == "active":
        plan, status = Plan.PRO, EntitlementState.ACTIVE
    else:
        plan, status = Plan.FREE, EntitlementState.INACTIVE

    set_plan(user_id, plan, status, period_end=_period_end(subscription))
    return SyncOutcome("applied", user_id=user_id, plan=plan)


def _on_subscription_deleted(event: BillingEvent, provider: BillingProvider) -> SyncOutcome:
    user_id = resolve_customer_user(event.data.get("customer"), provider)
    if not user_id:
        return SyncOutcome("user_not_found")

    set_plan(user_id, Plan.FREE, EntitlementState.INACTIVE)
    return SyncOutcome("applied", user_id=user_id, plan=Plan.FREE)


HANDLERS: Dict[str, Callable[[BillingEvent, BillingProvider], SyncOutcome]] = {
    CHECKOUT_COMPLETED: _on_checkout_completed,
    SUBSCRIPTION_UPDATED: _on_subscription_updated,
    SUBSCRIPTION_DELETED: _on_subscription_deleted,
}


def apply_event(event: BillingEvent, provider: BillingProvider) -> SyncOutcome:
    """Dispatch a verified event to its handler."""
    handler = HANDLERS.get(event.event_type)
    if handler is None:
        return SyncOutcome("ignored")

    result = handler(event, provider)
    if result.outcome == "user_not_found":
        log_event(
            "warning",
            "billing.sync.user_not_found",
            event_type=event.event_type,
            extra={"stripe_event_id": event.event_id, "customer": event.data.get("customer")},
        )
    else:
        log_event(
            "info",
            "billing.sync.applied",
            user_id=result.user_id,
            event_type=event.event_type,
            extra={"stripe_event_id": event.event_id, "plan": result.plan.value if result.plan else None},
        )
    return result
