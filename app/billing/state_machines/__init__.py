"""
State enums for billing models.
"""

from billing.state_machines.states import (
    ACCESS_GRANTING_STATUSES,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "ACCESS_GRANTING_STATUSES",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
