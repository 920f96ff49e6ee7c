"""
Billing domain models.

This module contains all billing models:
- BillingCustomer: Local projection of a provider customer and subscription
- WebhookEvent: Stripe webhook event tracking for exactly-once processing
- CreditTransaction: Append-only usage credit ledger (billing.ledger)
"""

from billing.models.customer import BillingCustomer
from billing.models.webhook_event import WebhookEvent
from billing.ledger.models import CreditTransaction, TransactionKind  # noqa: E402

__all__ = [
    "BillingCustomer",
    "CreditTransaction",
    "TransactionKind",
    "WebhookEvent",
]
