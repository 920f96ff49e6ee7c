"""
Billing admin configuration.

This file imports admin configurations from the ledger submodule
and registers billing domain models with the Django admin.
"""

from django.contrib import admin, messages

from billing.ledger.admin import CreditTransactionAdmin
from billing.ledger.services import CreditLedger
from billing.models import BillingCustomer, WebhookEvent
from billing.state_machines import WebhookEventStatus

__all__ = [
    "BillingCustomerAdmin",
    "CreditTransactionAdmin",
    "WebhookEventAdmin",
]


@admin.register(BillingCustomer)
class BillingCustomerAdmin(admin.ModelAdmin):
    """
    Admin configuration for BillingCustomer.

    Subscription fields are projected from provider events, so they are
    read-only here; the provider dashboard is the place to change them.
    """

    list_display = [
        "id",
        "email",
        "stripe_customer_id",
        "subscription_status",
        "plan_tier",
        "cancel_at_period_end",
        "credit_balance",
        "created_at",
    ]
    list_filter = ["subscription_status", "plan_tier", "cancel_at_period_end"]
    search_fields = ["id", "email", "stripe_customer_id", "stripe_subscription_id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_customer_id",
        "stripe_subscription_id",
        "subscription_status",
        "plan_tier",
        "cancel_at_period_end",
        "current_period_end",
        "credit_balance",
    ]
    raw_id_fields = ["user"]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "user", "email"),
            },
        ),
        (
            "Provider",
            {
                "fields": ("stripe_customer_id", "stripe_subscription_id"),
            },
        ),
        (
            "Subscription",
            {
                "fields": (
                    "subscription_status",
                    "plan_tier",
                    "cancel_at_period_end",
                    "current_period_end",
                ),
            },
        ),
        (
            "Credits",
            {
                "fields": ("credit_balance",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def credit_balance(self, obj: BillingCustomer) -> int:
        """Current credit balance (queries the ledger)."""
        return CreditLedger.balance(obj)

    credit_balance.short_description = "Credits"


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received; failed events can be
    re-queued with the retry action.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "status",
        "payload",
        "processed_at",
        "retry_count",
        "error_message",
    ]
    actions = ["retry_failed_events"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Re-queue selected failed events")
    def retry_failed_events(self, request, queryset):
        from billing.tasks import process_webhook_event

        failed = queryset.filter(status=WebhookEventStatus.FAILED)
        count = 0
        for event in failed:
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Queued {count} event(s)", messages.SUCCESS)

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
