"""
Django signals for the billing app.

This module defines the fulfillment and notification signals emitted when
provider events are projected:
- order_fulfillment_requested: one-time payment completed (not a credit pack)
- credits_purchased: a credit pack purchase was added to the ledger
- subscription_status_changed: projected subscription status changed
- subscription_payment_succeeded: a subscription invoice was paid
- subscription_payment_failed: a subscription payment attempt failed

Every signal is sent through send_on_commit(), i.e. after the transaction
that marks the event processed commits. A rolled-back attempt sends
nothing, so receivers observe each processed event at most once.

Related files:
    - services/subscription_projector.py: Sends the signals
    - apps.py: Signal registration

Usage:
    from django.dispatch import receiver
    from billing.signals import subscription_payment_failed

    @receiver(subscription_payment_failed)
    def send_dunning_email(sender, customer, invoice_id, attempt_count, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)


# Kwargs: customer, session_id, metadata, event_id
order_fulfillment_requested = Signal()

# Kwargs: customer, credits, balance, payment_ref, event_id
credits_purchased = Signal()

# Kwargs: customer, previous_status, status, event_id
subscription_status_changed = Signal()

# Kwargs: customer, invoice_id, subscription_id, event_id
subscription_payment_succeeded = Signal()

# Kwargs: customer, invoice_id, subscription_id, attempt_count,
#         next_payment_attempt, event_id
subscription_payment_failed = Signal()


def send_on_commit(signal: Signal, sender, **kwargs) -> None:
    """
    Send a signal once the current transaction commits.

    Outside a transaction the signal is sent immediately. Receiver
    exceptions are logged and do not affect other receivers.
    """

    def _send() -> None:
        responses = signal.send_robust(sender=sender, **kwargs)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Billing signal receiver failed",
                    extra={
                        "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                        "event_id": kwargs.get("event_id"),
                        "error": str(response),
                    },
                )

    transaction.on_commit(_send)


def log_subscription_status_change(
    sender, customer, previous_status, status, event_id=None, **kwargs
):
    """Audit log entry for every projected status change."""
    logger.info(
        f"Subscription status changed: {previous_status} -> {status}",
        extra={
            "customer_id": str(customer.pk),
            "previous_status": previous_status,
            "status": status,
            "event_id": event_id,
        },
    )


def register_signals():
    """
    Register all billing signal receivers.

    Called from apps.py when app is ready.
    """
    subscription_status_changed.connect(
        log_subscription_status_change,
        dispatch_uid="billing.log_subscription_status_change",
    )
    logger.debug("Billing signals registered")
