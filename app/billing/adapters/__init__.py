"""
Payment provider adapters.

All payment provider calls go through an object satisfying the
PaymentProviderClient protocol. StripeAdapter is the production
implementation; it applies timeouts, retries, idempotency keys and error
translation consistently.

Usage:
    from billing.adapters import StripeAdapter
    from billing.config import get_billing_config

    adapter = StripeAdapter(get_billing_config())
    session = adapter.create_portal_session("cus_123", return_url)
"""

from billing.adapters.base import (
    CheckoutSessionResult,
    CreateCheckoutSessionParams,
    CustomerResult,
    InvoiceResult,
    PaymentProviderClient,
    PortalSessionResult,
    SubscriptionResult,
    UsageReportResult,
)
from billing.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    StripeAdapter,
    backoff_delay,
    call_with_retries,
)

__all__ = [
    "CheckoutSessionResult",
    "CreateCheckoutSessionParams",
    "CustomerResult",
    "IdempotencyKeyGenerator",
    "InvoiceResult",
    "PaymentProviderClient",
    "PortalSessionResult",
    "StripeAdapter",
    "SubscriptionResult",
    "UsageReportResult",
    "backoff_delay",
    "call_with_retries",
]
