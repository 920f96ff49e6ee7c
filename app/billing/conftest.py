"""
Pytest fixtures shared by all billing tests.

This module provides users, billing customers, a BillingConfig matching the
test settings, and a mock payment provider. Subpackage conftests
(adapters/tests) add narrower fixtures on top.

Usage:
    def test_invoice_paid_grants_allocation(projector, subscribed_customer):
        projector.apply_invoice_paid(InvoiceResult.from_dict(invoice_object(...)))
"""

import dataclasses
from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from billing.adapters.base import (
    CheckoutSessionResult,
    CustomerResult,
    PaymentProviderClient,
    PortalSessionResult,
)
from billing.config import DEFAULT_REFETCH_POLICY, BillingConfig, CreditPack
from billing.services import SubscriptionProjector
from billing.state_machines import SubscriptionStatus
from billing.tests.factories import BillingCustomerFactory, UserFactory

WEBHOOK_SECRET = "whsec_test_secret"

PRICE_TIERS = {
    "price_basic_monthly": "basic",
    "price_pro_monthly": "pro",
}

TIER_CREDIT_ALLOCATIONS = {
    "basic": 100,
    "pro": 500,
}

CREDIT_PACKS = {
    "starter": {"credits": 100, "price_id": "price_credits_100"},
    "bulk": {"credits": 1000, "price_id": "price_credits_1000"},
}


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def billing_config():
    """BillingConfig that trusts payloads for every event type."""
    return BillingConfig(
        stripe_secret_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        baseline_tier="free",
        price_tiers=dict(PRICE_TIERS),
        refetch_policy={},
        tier_credit_allocations=dict(TIER_CREDIT_ALLOCATIONS),
        credit_packs={
            key: CreditPack(key=key, credits=pack["credits"], price_id=pack["price_id"])
            for key, pack in CREDIT_PACKS.items()
        },
        checkout_success_url="https://app.example.com/billing/success",
        checkout_cancel_url="https://app.example.com/billing/cancel",
        portal_return_url="https://app.example.com/billing",
    )


@pytest.fixture
def refetch_config(billing_config):
    """BillingConfig with the default refetch policy."""
    return dataclasses.replace(
        billing_config, refetch_policy=dict(DEFAULT_REFETCH_POLICY)
    )


@pytest.fixture
def billing_settings(settings):
    """
    Django settings matching billing_config.

    Changing STRIPE_* / BILLING_* settings clears the cached
    get_billing_config(), so code reading settings sees these values.
    """
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.BILLING_BASELINE_TIER = "free"
    settings.BILLING_PRICE_TIERS = dict(PRICE_TIERS)
    settings.BILLING_REFETCH_POLICY = {
        event_type: "trust_payload" for event_type in DEFAULT_REFETCH_POLICY
    }
    settings.BILLING_TIER_CREDIT_ALLOCATIONS = dict(TIER_CREDIT_ALLOCATIONS)
    settings.BILLING_CREDIT_PACKS = dict(CREDIT_PACKS)
    settings.BILLING_WEBHOOK_PROCESS_ASYNC = False
    settings.BILLING_USAGE_METER_EVENT = ""
    settings.BILLING_CHECKOUT_SUCCESS_URL = "https://app.example.com/billing/success"
    settings.BILLING_CHECKOUT_CANCEL_URL = "https://app.example.com/billing/cancel"
    settings.BILLING_PORTAL_RETURN_URL = "https://app.example.com/billing"
    return settings


# =============================================================================
# Provider Fixtures
# =============================================================================


@pytest.fixture
def mock_provider():
    """
    Mock payment provider.

    Creation calls return realistic result objects; retrieve_* calls must
    be configured by the test that needs them.
    """
    provider = MagicMock(spec=PaymentProviderClient)
    provider.create_customer.return_value = CustomerResult(
        id="cus_created123", email="user@example.com"
    )
    provider.create_checkout_session.return_value = CheckoutSessionResult(
        id="cs_created123",
        mode="subscription",
        url="https://checkout.stripe.com/c/pay/cs_created123",
    )
    provider.create_portal_session.return_value = PortalSessionResult(
        id="bps_created123",
        url="https://billing.stripe.com/p/session/bps_created123",
    )
    return provider


@pytest.fixture
def projector(billing_config, mock_provider):
    return SubscriptionProjector(billing_config, mock_provider)


# =============================================================================
# User and Customer Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def customer(db, user):
    """Billing customer owned by the test user, no subscription."""
    return BillingCustomerFactory(user=user, stripe_customer_id="cus_test123")


@pytest.fixture
def subscribed_customer(db, user):
    """Billing customer with an active pro subscription."""
    return BillingCustomerFactory(
        user=user,
        stripe_customer_id="cus_test123",
        stripe_subscription_id="sub_test123",
        subscription_status=SubscriptionStatus.ACTIVE,
        plan_tier="pro",
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    """API client authenticated as the test user."""
    api_client.force_authenticate(user=user)
    return api_client
