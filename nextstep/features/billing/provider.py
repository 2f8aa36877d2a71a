"""
What the billing service needs from a payment provider.

StripeProvider is the production implementation; tests pass an in-memory
fake. Plan synchronization only ever sees BillingEvent, never SDK objects.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class BillingEvent:
    """A verified billing-provider event, reduced to what plan sync needs."""
    event_id: str
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Hosted checkout and portal for the PRO subscription, customer lookups
    used to map provider customers back to users, and webhook verification.
    """

    def create_checkout_session(
        self,
        *,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> str:
        """
        Create a hosted subscription checkout. The session must carry
        user_id back on completion (client_reference_id + metadata.userId).

        Returns:
            Checkout page URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def find_customer_id(self, email: str) -> Optional[str]:
        """Return the provider customer ID registered under this email, if any."""
        ...

    def retrieve_customer_email(self, customer_id: str) -> Optional[str]:
        """Return the email on file for a provider customer, if any."""
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def construct_event(self, body: bytes, signature: Optional[str]) -> BillingEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature missing/invalid or payload malformed
        """
        ...


class BillingProviderError(Exception):
    """Provider API call failed or provider is misconfigured."""


class BillingWebhookError(BillingProviderError):
    """Webhook delivery rejected: missing/invalid signature or bad payload."""
