"""
State enums for billing models.

These are Django TextChoices for database storage and admin integration.
Subscription status mirrors the provider's subscription status values; it
is projected from events rather than driven by local transitions.

Subscription Status:
    none → incomplete → active / trialing
    trialing → active → past_due → unpaid / canceled
    any → canceled (subscription deleted)

Webhook Event Status:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class SubscriptionStatus(models.TextChoices):
    """
    Subscription status of a billing customer.

    NONE means the customer never had a subscription. All other values
    are the provider's subscription statuses.

    Access-granting states: TRIALING, ACTIVE
    """

    NONE = "none", "None"
    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    CANCELED = "canceled", "Canceled"
    UNPAID = "unpaid", "Unpaid"
    INCOMPLETE = "incomplete", "Incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired", "Incomplete Expired"
    PAUSED = "paused", "Paused"

    @classmethod
    def from_provider(cls, value: str | None, default: str | None = None) -> str:
        """
        Coerce a provider status string into a known status.

        Unknown or missing values map to default (NONE when not given).
        """
        if value in cls.values:
            return value
        return default or cls.NONE


ACCESS_GRANTING_STATUSES = frozenset(
    {SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE}
)


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    Tracks the lifecycle of webhook event processing for idempotency.
    PROCESSED is written in the same transaction as the event's side
    effects, so it is the exactly-once gate.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "ACCESS_GRANTING_STATUSES",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
