"""
Billing app configuration.

This app provides the billing core including:
- Stripe webhook intake and event routing
- Subscription state projection
- Usage credit ledger
"""

from django.apps import AppConfig


class BillingAppConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self) -> None:
        # Webhook handlers register themselves on import
        import billing.webhooks.handlers  # noqa: F401
        from billing import config, signals  # noqa: F401

        signals.register_signals()
