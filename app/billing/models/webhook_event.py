"""
WebhookEvent model for provider webhook event tracking.

Stores every webhook event received from Stripe for idempotent
processing and audit trails. The unique stripe_event_id constraint
ensures duplicate deliveries are detected and handled correctly.

Usage:
    from billing.models import WebhookEvent
    from billing.state_machines import WebhookEventStatus

    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id="evt_1234567890",
        defaults={
            "event_type": "invoice.paid",
            "payload": webhook_payload,
        },
    )

    if event.is_processed:
        # Duplicate delivery - side effects already applied
        return
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for exactly-once processing.

    Processing Flow:
        1. Webhook arrives, signature is verified
        2. Insert/get WebhookEvent with stripe_event_id
        3. If PROCESSED -> duplicate, nothing runs
        4. Lock the row, route to the handler for its kind
        5. Mark PROCESSED in the same transaction as the side effects
        6. On error the transaction rolls back and the row is marked
           FAILED in a separate write; the retry task picks it up

    Fields:
        stripe_event_id: Unique Stripe Event ID (evt_xxx)
        event_type: Type of webhook event
        payload: Full JSON payload from Stripe
        status: Processing status
        processed_at: When event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of failed processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'invoice.paid')",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of failed processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(
                fields=["status", "created_at"],
                name="billing_webhook_status_idx",
            ),
            models.Index(
                fields=["status", "retry_count"],
                name="billing_webhook_retry_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with event ID and type."""
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        """Check if event has been successfully processed."""
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        """Check if event processing failed."""
        return self.status == WebhookEventStatus.FAILED

    def can_retry(self, max_retries: int) -> bool:
        """Check if event failed and is still under the retry cap."""
        return self.is_failed and self.retry_count < max_retries

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    @classmethod
    def record_failure(cls, pk, error_message: str) -> None:
        """
        Mark an event failed and bump its retry count in one UPDATE.

        Used after the processing transaction rolled back, so it must not
        depend on the in-memory instance. Never downgrades a processed event.
        """
        cls.objects.filter(pk=pk).exclude(
            status=WebhookEventStatus.PROCESSED
        ).update(
            status=WebhookEventStatus.FAILED,
            error_message=error_message,
            retry_count=F("retry_count") + 1,
            updated_at=timezone.now(),
        )

    def get_object(self) -> dict:
        """Return payload.data.object, or an empty dict."""
        try:
            obj = self.payload.get("data", {}).get("object", {})
        except (AttributeError, TypeError):
            return {}
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        """
        Extract the primary object ID from the webhook payload.

        For most Stripe webhooks, the object ID is in payload.data.object.id

        Returns:
            The object ID if found, None otherwise
        """
        return self.get_object().get("id")
