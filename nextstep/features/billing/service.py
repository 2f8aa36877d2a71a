"""
Billing service orchestrator.

Coordinates:
- Checkout and portal sessions
- Webhook verification, delivery ledger and plan synchronization

All Stripe-specific code is in stripe_provider.py; plan transitions live
in sync.py.
"""
from datetime import datetime, timezone
from typing import Dict, Optional
import logging

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from nextstep.core.config import settings
from nextstep.core.database import get_db_session, billing_events
from nextstep.core.errors import BillingError
from nextstep.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    BillingEvent,
)
from nextstep.features.billing.stripe_provider import StripeProvider
from nextstep.features.billing.sync import SyncOutcome, apply_event
from nextstep.features.users.service import set_stripe_customer_id

logger = logging.getLogger("nextstep")


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Build the billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError as e:
        logger.warning(f"Billing provider unavailable: {e}")
        return None


def start_checkout(user: Dict, provider: BillingProvider) -> str:
    """
    Start a hosted checkout session for the PRO subscription.

    Raises:
        BillingError: If STRIPE_PRICE_ID is not configured
        BillingProviderError: If checkout creation fails
    """
    price_id = settings.STRIPE_PRICE_ID
    if not price_id:
        raise BillingError("No Stripe price configured", status_code=500)

    client_url = settings.CLIENT_URL.rstrip("/")
    return provider.create_checkout_session(
        user_id=user["user_id"],
        price_id=price_id,
        email=user.get("email"),
        customer_id=user.get("stripe_customer_id"),
        success_url=f"{client_url}/billing?success=true",
        cancel_url=f"{client_url}/billing?canceled=true",
    )


def start_portal(user: Dict, provider: BillingProvider) -> str:
    """
    Start billing portal session for customer self-service.

    Uses the stored Stripe customer id; falls back to an email search and
    remembers the match.

    Raises:
        BillingError (400): No Stripe customer exists for the user
        BillingProviderError: If portal creation fails
    """
    customer_id = user.get("stripe_customer_id")
    if not customer_id and user.get("email"):
        customer_id = provider.find_customer_id(user["email"])
        if customer_id:
            set_stripe_customer_id(user["user_id"], customer_id)

    if not customer_id:
        raise BillingError("No Stripe customer found for this user")

    return provider.create_portal_session(
        customer_id=customer_id,
        return_url=f"{settings.CLIENT_URL.rstrip('/')}/billing",
    )


def _already_processed(event: BillingEvent) -> bool:
    """Record the delivery; True when this event id was already applied."""
    with get_db_session() as session:
        row = session.execute(
            select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event.event_id)
        ).first()
        if row:
            return bool(row.processed)
    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    received_at=datetime.now(timezone.utc),
                    processed=False,
                )
            )
    except IntegrityError:
        # Concurrent delivery of the same event; applying twice is harmless
        pass
    return False


def _mark_processed(event: BillingEvent, outcome: SyncOutcome) -> None:
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event.event_id)
            .values(processed=True, processed_at=datetime.now(timezone.utc), outcome=outcome.outcome)
        )


def process_webhook(headers: Dict[str, str], body: bytes, provider: BillingProvider) -> SyncOutcome:
    """
    Verify and apply a Stripe webhook delivery.

    Raises:
        BillingWebhookError: Missing/invalid signature or malformed payload
    """
    signature = headers.get("stripe-signature") or headers.get("Stripe-Signature")
    if not signature:
        raise BillingWebhookError("Missing stripe-signature header")

    event = provider.construct_event(body, signature)

    if _already_processed(event):
        logger.info(
            "billing.webhook.duplicate",
            extra={"stripe_event_id": event.event_id, "event_type": event.event_type},
        )
        return SyncOutcome("duplicate")

    outcome = apply_event(event, provider)
    _mark_processed(event, outcome)
    return outcome
