"""
Webhook event router and handlers.

This module provides a handler registry keyed by EventKind and the
handlers that translate events into SubscriptionProjector calls.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types
- Unknown event types acknowledged without side effects

Usage:
    from billing.webhooks.handlers import EventRouter, HandlerContext, register_handler

    # Register a custom handler
    @register_handler(EventKind.INVOICE_PAID)
    def handle_invoice_paid(envelope: EventEnvelope, context: HandlerContext) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = EventRouter.dispatch(envelope, HandlerContext(config, provider))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from core.services import ServiceResult

from billing.adapters.base import (
    CheckoutSessionResult,
    InvoiceResult,
    SubscriptionResult,
)
from billing.services.subscription_projector import SubscriptionProjector
from billing.webhooks.events import EventEnvelope, EventKind

if TYPE_CHECKING:
    from billing.adapters.base import PaymentProviderClient
    from billing.config import BillingConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerContext:
    """
    Collaborators handed to every handler.

    Attributes:
        config: Process-wide billing configuration
        provider: Payment provider client used for re-fetches
    """

    config: BillingConfig
    provider: PaymentProviderClient

    def projector(self) -> SubscriptionProjector:
        return SubscriptionProjector(self.config, self.provider)


Handler = Callable[[EventEnvelope, HandlerContext], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event kinds to handler functions
WEBHOOK_HANDLERS: dict[EventKind, Handler] = {}


def register_handler(kind: EventKind) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler(EventKind.INVOICE_PAID)
        def handle_invoice_paid(envelope, context) -> ServiceResult:
            ...

    Args:
        kind: The event kind handled

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[kind] = func
        logger.debug(f"Registered webhook handler for {kind.value}")
        return func

    return decorator


class EventRouter:
    """Routes envelopes to their registered handler."""

    @staticmethod
    def dispatch(envelope: EventEnvelope, context: HandlerContext) -> ServiceResult:
        """
        Dispatch an event to the appropriate handler.

        If no handler is registered (including EventKind.UNKNOWN), logs at
        info and returns success without touching any record.

        Args:
            envelope: The authenticated event
            context: Handler collaborators

        Returns:
            ServiceResult from the handler, or success if no handler
        """
        handler = WEBHOOK_HANDLERS.get(envelope.kind)

        if not handler:
            logger.info(
                f"No handler registered for event type: {envelope.type}",
                extra={"stripe_event_id": envelope.id},
            )
            return ServiceResult.success(None)

        logger.info(
            f"Dispatching {envelope.type} to handler",
            extra={"stripe_event_id": envelope.id},
        )

        return handler(envelope, context)


# =============================================================================
# Checkout Handlers
# =============================================================================


@register_handler(EventKind.CHECKOUT_COMPLETED)
def handle_checkout_completed(
    envelope: EventEnvelope, context: HandlerContext
) -> ServiceResult:
    """
    Handle checkout.session.completed.

    Subscription checkouts link the customer and activate the
    subscription; payment checkouts fulfill credit packs or request
    order fulfillment.
    """
    session = CheckoutSessionResult.from_dict(envelope.data_object)
    return context.projector().apply_checkout_completed(session, event_id=envelope.id)


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler(EventKind.SUBSCRIPTION_CREATED)
@register_handler(EventKind.SUBSCRIPTION_UPDATED)
def handle_subscription_change(
    envelope: EventEnvelope, context: HandlerContext
) -> ServiceResult:
    """Handle customer.subscription.created and customer.subscription.updated."""
    subscription = SubscriptionResult.from_dict(envelope.data_object)
    return context.projector().apply_subscription_change(
        subscription,
        envelope.kind,
        event_id=envelope.id,
    )


@register_handler(EventKind.SUBSCRIPTION_DELETED)
def handle_subscription_deleted(
    envelope: EventEnvelope, context: HandlerContext
) -> ServiceResult:
    subscription = SubscriptionResult.from_dict(envelope.data_object)
    return context.projector().apply_subscription_deleted(
        subscription, event_id=envelope.id
    )


# =============================================================================
# Invoice Handlers
# =============================================================================


@register_handler(EventKind.INVOICE_PAID)
def handle_invoice_paid(envelope: EventEnvelope, context: HandlerContext) -> ServiceResult:
    """
    Handle invoice.paid.

    Called for initial and renewal payments. Refreshes subscription
    state and grants the plan's credit allocation.
    """
    invoice = InvoiceResult.from_dict(envelope.data_object)
    return context.projector().apply_invoice_paid(invoice, event_id=envelope.id)


@register_handler(EventKind.INVOICE_PAYMENT_FAILED)
def handle_invoice_payment_failed(
    envelope: EventEnvelope, context: HandlerContext
) -> ServiceResult:
    """Handle invoice.payment_failed (dunning)."""
    invoice = InvoiceResult.from_dict(envelope.data_object)
    return context.projector().apply_invoice_payment_failed(
        invoice, event_id=envelope.id
    )
