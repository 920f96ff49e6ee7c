"""
Webhook intake: authenticate, record and process provider events.

WebhookIntake is the entry point for every provider event, whether it
arrives over HTTP (views.stripe_webhook) or from the Celery task
(tasks.process_webhook_event).

Exactly-once processing:
    1. Each event id is recorded once (unique stripe_event_id)
    2. Processing locks the WebhookEvent row (select_for_update)
    3. Handler side effects and the processed mark commit in ONE
       transaction; if the handler raises, both roll back
    4. A concurrent or repeated delivery observes "processed" and is
       reported as a duplicate without running the handler

Usage:
    from billing.webhooks.intake import WebhookIntake

    intake = WebhookIntake.from_settings()
    result = intake.receive(request.body, request.headers.get("Stripe-Signature"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.db import transaction

from billing.exceptions import AuthenticationError, BillingError
from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus
from billing.webhooks.events import EventEnvelope, EventKind
from billing.webhooks.handlers import EventRouter, HandlerContext

if TYPE_CHECKING:
    import uuid

    from billing.adapters.base import PaymentProviderClient
    from billing.config import BillingConfig


logger = logging.getLogger(__name__)


class IntakeOutcome(str, Enum):
    """What happened to a received event."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    QUEUED = "queued"
    IGNORED = "ignored"


@dataclass(frozen=True)
class IntakeResult:
    """
    Result of receiving or processing one event.

    Attributes:
        outcome: What happened
        event_id: Provider event id (evt_xxx)
        event_type: Provider event type
        webhook_event_id: Local WebhookEvent primary key
    """

    outcome: IntakeOutcome
    event_id: str
    event_type: str
    webhook_event_id: uuid.UUID | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.outcome.value,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "webhook_event_id": str(self.webhook_event_id)
            if self.webhook_event_id
            else None,
        }


class WebhookIntake:
    """
    Authenticates, records and processes provider webhook events.

    Args:
        config: Billing configuration (async mode, secrets via the provider)
        provider: Provider client used for signature verification and by
            handlers for re-fetches
        router: Event router (defaults to EventRouter)
    """

    def __init__(
        self,
        config: BillingConfig,
        provider: PaymentProviderClient,
        router: type[EventRouter] | EventRouter = EventRouter,
    ):
        self.config = config
        self.provider = provider
        self.router = router

    @classmethod
    def from_settings(cls) -> WebhookIntake:
        """Build an intake wired to the configured Stripe adapter."""
        from billing.adapters import StripeAdapter
        from billing.config import get_billing_config

        config = get_billing_config()
        return cls(config, StripeAdapter(config))

    # =========================================================================
    # Parsing
    # =========================================================================

    def parse(self, payload: bytes, signature: str | None) -> EventEnvelope:
        """
        Authenticate and decode a raw webhook delivery.

        Raises:
            AuthenticationError: Signature header missing or invalid
            MalformedPayloadError: Body is not a usable event
        """
        if not signature:
            raise AuthenticationError(
                "Missing Stripe-Signature header",
                kind=AuthenticationError.MISSING_SIGNATURE,
            )

        event = self.provider.verify_webhook_signature(payload, signature)
        return EventEnvelope.from_dict(event)

    # =========================================================================
    # Receiving
    # =========================================================================

    def receive(self, payload: bytes, signature: str | None) -> IntakeResult:
        """
        Receive one delivery: parse, record, then process or queue.

        Raises:
            AuthenticationError / MalformedPayloadError: Rejected delivery
            Exception: Whatever the handler raised (inline mode only); the
                event is recorded as failed and the sender should retry
        """
        envelope = self.parse(payload, signature)

        logger.info(
            f"Received Stripe webhook: {envelope.type}",
            extra={"stripe_event_id": envelope.id, "event_type": envelope.type},
        )

        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=envelope.id,
            defaults={
                "event_type": envelope.type,
                "payload": envelope.payload,
                "status": WebhookEventStatus.PENDING,
            },
        )

        if not created and webhook_event.is_processed:
            logger.info(
                "Webhook already processed, returning success",
                extra={"stripe_event_id": envelope.id},
            )
            return IntakeResult(
                outcome=IntakeOutcome.DUPLICATE,
                event_id=envelope.id,
                event_type=envelope.type,
                webhook_event_id=webhook_event.pk,
            )

        if self.config.process_async:
            from billing.tasks import process_webhook_event

            process_webhook_event.delay(str(webhook_event.pk))
            logger.info(
                "Webhook queued for processing",
                extra={
                    "stripe_event_id": envelope.id,
                    "webhook_event_id": str(webhook_event.pk),
                },
            )
            return IntakeResult(
                outcome=IntakeOutcome.QUEUED,
                event_id=envelope.id,
                event_type=envelope.type,
                webhook_event_id=webhook_event.pk,
            )

        return self.process(webhook_event.pk)

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, webhook_event_id: uuid.UUID | str) -> IntakeResult:
        """
        Process a recorded event exactly once.

        Raises:
            WebhookEvent.DoesNotExist: Unknown webhook_event_id
            Exception: Whatever the handler raised, after the failure has
                been recorded (status failed, retry_count + 1)
        """
        try:
            with transaction.atomic():
                webhook_event = WebhookEvent.objects.select_for_update().get(
                    pk=webhook_event_id
                )

                if webhook_event.is_processed:
                    logger.info(
                        "WebhookEvent already processed, skipping",
                        extra={
                            "webhook_event_id": str(webhook_event.pk),
                            "stripe_event_id": webhook_event.stripe_event_id,
                        },
                    )
                    return IntakeResult(
                        outcome=IntakeOutcome.DUPLICATE,
                        event_id=webhook_event.stripe_event_id,
                        event_type=webhook_event.event_type,
                        webhook_event_id=webhook_event.pk,
                    )

                webhook_event.mark_processing()
                webhook_event.save(update_fields=["status", "updated_at"])

                envelope = EventEnvelope.from_dict(webhook_event.payload)
                logger.info(
                    f"Dispatching webhook: {envelope.type}",
                    extra={
                        "webhook_event_id": str(webhook_event.pk),
                        "stripe_event_id": envelope.id,
                        "event_type": envelope.type,
                        "retry_count": webhook_event.retry_count,
                    },
                )

                result = self.router.dispatch(
                    envelope, HandlerContext(self.config, self.provider)
                )
                if not result.success:
                    raise BillingError(
                        result.error or "Handler returned failure",
                        error_code=result.error_code,
                    )

                webhook_event.mark_processed()
                webhook_event.save()

        except WebhookEvent.DoesNotExist:
            logger.error(
                "WebhookEvent not found",
                extra={"webhook_event_id": str(webhook_event_id)},
            )
            raise
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            WebhookEvent.record_failure(webhook_event_id, error_msg)
            logger.exception(
                "Webhook processing failed with exception",
                extra={
                    "webhook_event_id": str(webhook_event_id),
                    "error": error_msg,
                },
            )
            raise

        logger.info(
            "Webhook processed successfully",
            extra={
                "webhook_event_id": str(webhook_event.pk),
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        outcome = (
            IntakeOutcome.IGNORED
            if envelope.kind == EventKind.UNKNOWN
            else IntakeOutcome.PROCESSED
        )
        return IntakeResult(
            outcome=outcome,
            event_id=webhook_event.stripe_event_id,
            event_type=webhook_event.event_type,
            webhook_event_id=webhook_event.pk,
        )
