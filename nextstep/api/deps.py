"""Shared FastAPI dependencies: caller, text generation client, billing provider."""

from typing import Optional

from fastapi import Depends, Request

from nextstep.core.auth import Identity, get_current_identity
from nextstep.core.errors import ServiceUnavailableError
from nextstep.features.billing.provider import BillingProvider
from nextstep.features.recommendations.llm import ChatClient
from nextstep.features.users.service import sync_user_from_identity


def require_user(identity: Identity = Depends(get_current_identity)) -> dict:
    """Authenticated caller, upserted into app_users on every request."""
    return sync_user_from_identity(identity)


def get_chat_client(request: Request) -> ChatClient:
    client: Optional[ChatClient] = getattr(request.app.state, "chat_client", None)
    if client is None:
        raise ServiceUnavailableError("Text generation is not configured")
    return client


def get_billing_provider(request: Request) -> BillingProvider:
    provider: Optional[BillingProvider] = getattr(request.app.state, "billing_provider", None)
    if provider is None:
        raise ServiceUnavailableError("Billing is not configured", code="billing_disabled")
    return provider
