"""
Billing API routes.

- GET  /billing/status: plan and today's usage
- POST /billing/create-checkout-session: hosted checkout for PRO
- POST /billing/create-portal-session: hosted subscription management
- POST /billing/webhook: Stripe subscription lifecycle events
"""
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from nextstep.api.deps import get_billing_provider, require_user
from nextstep.core.errors import BillingError
from nextstep.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
)
from nextstep.features.billing.service import process_webhook, start_checkout, start_portal
from nextstep.features.entitlements.service import get_status
from nextstep.models.base import ApiModel
from nextstep.models.entitlement import EntitlementStatus

logger = logging.getLogger("nextstep")

router = APIRouter(prefix="/billing", tags=["billing"])


class SessionUrlResponse(ApiModel):
    """Hosted Stripe page to redirect the browser to."""
    url: str


@router.get("/status", response_model=EntitlementStatus)
def billing_status(user: dict = Depends(require_user)):
    """
    Returns:
        {"plan", "usageCount", "remaining", "limit"}; remaining is
        "UNLIMITED" for PRO
    """
    return get_status(user["user_id"])


@router.post("/create-checkout-session", response_model=SessionUrlResponse)
def create_checkout_session(
    user: dict = Depends(require_user),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Errors:
        500: no price configured or Stripe API error
        503: billing disabled
    """
    try:
        return SessionUrlResponse(url=start_checkout(user, provider))
    except BillingProviderError as e:
        raise BillingError(str(e), code="stripe_error", status_code=500)


@router.post("/create-portal-session", response_model=SessionUrlResponse)
def create_portal_session(
    user: dict = Depends(require_user),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Errors:
        400: no Stripe customer exists for the user
        500: Stripe API error
        503: billing disabled
    """
    try:
        return SessionUrlResponse(url=start_portal(user, provider))
    except BillingProviderError as e:
        raise BillingError(str(e), code="stripe_error", status_code=500)


@router.post("/webhook")
async def handle_webhook(request: Request, provider: BillingProvider = Depends(get_billing_provider)):
    """
    Handle Stripe webhook events.

    Unauthenticated; trust comes from the stripe-signature header checked
    against STRIPE_WEBHOOK_SECRET over the raw body.

    Returns:
        {"received": true}

    Errors:
        400: missing/invalid signature or malformed payload
        503: billing disabled
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        await run_in_threadpool(process_webhook, headers, body, provider)
    except BillingWebhookError as e:
        logger.warning("billing.webhook.rejected", extra={"error_message": str(e)})
        raise BillingError(f"Webhook Error: {e}", code="webhook_error")
    return {"received": True}
