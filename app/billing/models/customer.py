"""
BillingCustomer model: the local projection of a provider customer.

One row per paying (or would-be paying) account. Subscription fields are
written only by the subscription projector in response to provider events;
the credit balance is derived from the ledger (billing.ledger) and is not
stored here.

Usage:
    from billing.models import BillingCustomer

    customer = BillingCustomer.objects.get(stripe_customer_id="cus_123")
    if customer.has_active_access:
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import ACCESS_GRANTING_STATUSES, SubscriptionStatus


def default_plan_tier() -> str:
    return getattr(settings, "BILLING_BASELINE_TIER", "free")


class BillingCustomer(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Local billing state for one customer.

    The primary key doubles as the checkout client_reference_id, which is
    how a completed checkout is matched back to a local record.

    Fields:
        user: Local account owning this record (optional)
        email: Contact email, display only
        stripe_customer_id: Provider customer reference (cus_xxx)
        stripe_subscription_id: Current provider subscription (sub_xxx)
        subscription_status: Projected subscription status
        plan_tier: Plan tier key derived from the subscription price
        cancel_at_period_end: Whether the subscription ends at period end
        current_period_end: End of the current billing period (display only)
        metadata: Display metadata copied from events (from MetadataMixin)

    Note:
        The credit balance row lock (select_for_update on this model) is
        what serializes concurrent ledger mutations for a customer.
    """

    # ==========================================================================
    # Ownership
    # ==========================================================================

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_customer",
        help_text="Local account that owns this billing record",
    )

    email = models.EmailField(
        blank=True,
        default="",
        help_text="Customer email (display only)",
    )

    # ==========================================================================
    # Provider References
    # ==========================================================================

    stripe_customer_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    stripe_subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Current Stripe Subscription ID (sub_xxx)",
    )

    # ==========================================================================
    # Projected Subscription State
    # ==========================================================================

    subscription_status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.NONE,
        db_index=True,
        help_text="Subscription status as last reported by the provider",
    )

    plan_tier = models.CharField(
        max_length=50,
        default=default_plan_tier,
        help_text="Plan tier derived from the subscription price",
    )

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Whether the subscription is set to end at period end",
    )

    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the current billing period (display only)",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Billing Customer"
        verbose_name_plural = "Billing Customers"
        indexes = [
            models.Index(
                fields=["subscription_status", "plan_tier"],
                name="billing_cust_status_tier_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with provider reference."""
        return f"BillingCustomer({self.stripe_customer_id or self.pk})"

    @property
    def has_active_access(self) -> bool:
        """Whether the subscription currently grants access."""
        return self.subscription_status in ACCESS_GRANTING_STATUSES
