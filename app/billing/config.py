"""
Process-wide billing configuration.

Billing settings live in Django settings (populated from the environment by
django-environ in config/settings.py). They are read once into an immutable
BillingConfig which is then passed explicitly to the webhook intake, the
event handlers and the provider adapter. Nothing in the billing core reads
settings directly at call time.

Settings:
    STRIPE_SECRET_KEY: Provider API secret key
    STRIPE_WEBHOOK_SECRET: Webhook signing secret
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: Max signature age (default: 300)
    STRIPE_API_TIMEOUT_SECONDS: Provider call timeout (default: 10)
    STRIPE_MAX_RETRIES: Retry budget for transient provider errors (default: 3)
    BILLING_BASELINE_TIER: Tier for customers without a paid plan ("free")
    BILLING_PRICE_TIERS: Provider price id -> plan tier
    BILLING_REFETCH_POLICY: Event type -> "trust_payload" | "refetch"
    BILLING_TIER_CREDIT_ALLOCATIONS: Plan tier -> credits granted per paid invoice
    BILLING_CREDIT_PACKS: Pack key -> {"credits": int, "price_id": str}
    BILLING_WEBHOOK_PROCESS_ASYNC: Process webhooks via Celery (default: False)
    BILLING_WEBHOOK_RETENTION_DAYS: Keep processed events this long (default: 90)
    BILLING_MAX_WEBHOOK_RETRIES: Retry cap for failed events (default: 5)
    BILLING_USAGE_METER_EVENT: Provider meter event name ("" disables reporting)
    BILLING_CHECKOUT_SUCCESS_URL / BILLING_CHECKOUT_CANCEL_URL /
    BILLING_PORTAL_RETURN_URL: Redirect targets for hosted pages

Usage:
    from billing.config import get_billing_config

    config = get_billing_config()
    if config.policy_for("invoice.paid") == RefetchPolicy.REFETCH:
        ...
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed
from django.db import models
from django.dispatch import receiver

logger = logging.getLogger(__name__)


class RefetchPolicy(models.TextChoices):
    """
    How a handler treats the object embedded in an event payload.

    Values:
        TRUST_PAYLOAD: Use the embedded object as-is
        REFETCH: Retrieve the current object from the provider and use it
            for state-bearing fields (status, tier, cancel-at-period-end)
    """

    TRUST_PAYLOAD = "trust_payload", "Trust Payload"
    REFETCH = "refetch", "Re-fetch From Provider"


DEFAULT_REFETCH_POLICY: dict[str, str] = {
    "customer.subscription.created": RefetchPolicy.REFETCH,
    "customer.subscription.updated": RefetchPolicy.REFETCH,
    "invoice.paid": RefetchPolicy.REFETCH,
    "invoice.payment_failed": RefetchPolicy.REFETCH,
}


@dataclass(frozen=True)
class CreditPack:
    """
    A purchasable bundle of usage credits.

    Attributes:
        key: Pack identifier used by clients (e.g. "starter")
        credits: Number of credits granted on purchase
        price_id: Provider price charged at checkout
    """

    key: str
    credits: int
    price_id: str


@dataclass(frozen=True)
class BillingConfig:
    """
    Immutable billing configuration.

    Build with BillingConfig.from_settings() or get_billing_config().
    Tests construct it directly with the fields they care about.
    """

    stripe_secret_key: str = ""
    webhook_secret: str = ""
    webhook_tolerance_seconds: int = 300
    api_timeout_seconds: int = 10
    max_retries: int = 3
    baseline_tier: str = "free"
    price_tiers: dict[str, str] = field(default_factory=dict)
    refetch_policy: dict[str, str] = field(default_factory=dict)
    tier_credit_allocations: dict[str, int] = field(default_factory=dict)
    credit_packs: dict[str, CreditPack] = field(default_factory=dict)
    process_async: bool = False
    webhook_retention_days: int = 90
    max_webhook_retries: int = 5
    usage_meter_event: str = ""
    checkout_success_url: str = ""
    checkout_cancel_url: str = ""
    portal_return_url: str = ""

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_settings(cls) -> BillingConfig:
        """
        Build configuration from Django settings.

        Raises:
            ImproperlyConfigured: If a policy, pack or allocation is invalid
        """
        refetch_policy = {
            **DEFAULT_REFETCH_POLICY,
            **getattr(settings, "BILLING_REFETCH_POLICY", {}),
        }
        for event_type, policy in refetch_policy.items():
            if policy not in RefetchPolicy.values:
                raise ImproperlyConfigured(
                    f"BILLING_REFETCH_POLICY[{event_type!r}] must be one of "
                    f"{RefetchPolicy.values}, got {policy!r}"
                )

        allocations = dict(getattr(settings, "BILLING_TIER_CREDIT_ALLOCATIONS", {}))
        for tier, credits in allocations.items():
            if not isinstance(credits, int) or credits < 0:
                raise ImproperlyConfigured(
                    f"BILLING_TIER_CREDIT_ALLOCATIONS[{tier!r}] must be a "
                    f"non-negative integer"
                )

        packs: dict[str, CreditPack] = {}
        for key, pack in getattr(settings, "BILLING_CREDIT_PACKS", {}).items():
            try:
                packs[key] = CreditPack(
                    key=key,
                    credits=int(pack["credits"]),
                    price_id=str(pack["price_id"]),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ImproperlyConfigured(
                    f"BILLING_CREDIT_PACKS[{key!r}] needs 'credits' and 'price_id'"
                ) from e

        return cls(
            stripe_secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            webhook_tolerance_seconds=getattr(
                settings, "STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300
            ),
            api_timeout_seconds=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            max_retries=getattr(settings, "STRIPE_MAX_RETRIES", 3),
            baseline_tier=getattr(settings, "BILLING_BASELINE_TIER", "free"),
            price_tiers=dict(getattr(settings, "BILLING_PRICE_TIERS", {})),
            refetch_policy=refetch_policy,
            tier_credit_allocations=allocations,
            credit_packs=packs,
            process_async=getattr(settings, "BILLING_WEBHOOK_PROCESS_ASYNC", False),
            webhook_retention_days=getattr(
                settings, "BILLING_WEBHOOK_RETENTION_DAYS", 90
            ),
            max_webhook_retries=getattr(settings, "BILLING_MAX_WEBHOOK_RETRIES", 5),
            usage_meter_event=getattr(settings, "BILLING_USAGE_METER_EVENT", ""),
            checkout_success_url=getattr(settings, "BILLING_CHECKOUT_SUCCESS_URL", ""),
            checkout_cancel_url=getattr(settings, "BILLING_CHECKOUT_CANCEL_URL", ""),
            portal_return_url=getattr(settings, "BILLING_PORTAL_RETURN_URL", ""),
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def policy_for(self, event_type: str) -> RefetchPolicy:
        """Return the payload policy for an event type (trust by default)."""
        return RefetchPolicy(
            self.refetch_policy.get(event_type, RefetchPolicy.TRUST_PAYLOAD)
        )

    def tier_for_price(self, price_id: str | None) -> str | None:
        """Map a provider price id to a plan tier, or None if unmapped."""
        if not price_id:
            return None
        return self.price_tiers.get(price_id)

    def credit_allocation_for(self, tier: str) -> int:
        """Credits granted to a tier on each paid subscription invoice."""
        return self.tier_credit_allocations.get(tier, 0)

    def credit_pack(self, key: str) -> CreditPack | None:
        return self.credit_packs.get(key)


@functools.lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    """
    Return the process-wide BillingConfig, built once from settings.

    The cache is cleared whenever a STRIPE_* or BILLING_* setting changes
    (override_settings in tests).
    """
    config = BillingConfig.from_settings()
    logger.debug(
        "Billing configuration loaded",
        extra={
            "baseline_tier": config.baseline_tier,
            "process_async": config.process_async,
            "price_count": len(config.price_tiers),
        },
    )
    return config


@receiver(setting_changed)
def _reset_billing_config(sender, setting: str, **kwargs) -> None:
    if setting.startswith(("STRIPE_", "BILLING_")):
        get_billing_config.cache_clear()
