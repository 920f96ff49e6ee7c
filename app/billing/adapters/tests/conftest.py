"""
Pytest fixtures for Stripe adapter tests.

This module provides fixtures for testing the Stripe adapter, including
mock Stripe API responses, error conditions, and a ready adapter.

Sections:
    - Adapter Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
"""

from dataclasses import dataclass
from typing import Any

import pytest
import stripe

from billing.adapters import StripeAdapter
from billing.config import BillingConfig


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def adapter_config():
    """BillingConfig with test credentials and a small retry budget."""
    return BillingConfig(
        stripe_secret_key="sk_test_adapter",
        webhook_secret="whsec_adapter",
        webhook_tolerance_seconds=300,
        api_timeout_seconds=5,
        max_retries=2,
    )


@pytest.fixture
def sleeps():
    """Collects backoff delays instead of sleeping."""
    return []


@pytest.fixture
def adapter(adapter_config, sleeps):
    """StripeAdapter whose backoff sleeps are recorded, not slept."""
    return StripeAdapter(adapter_config, sleep=sleeps.append)


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_customer():
    """Create a mock Customer response."""

    def _create(
        id: str = "cus_test123",
        email: str | None = "customer@example.com",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "customer",
                "email": email,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_subscription():
    """Create a mock Subscription response."""

    def _create(
        id: str = "sub_test123",
        status: str = "active",
        customer: str = "cus_test123",
        price_id: str = "price_pro_monthly",
        cancel_at_period_end: bool = False,
        current_period_end: int = 1767225600,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "subscription",
                "status": status,
                "customer": customer,
                "cancel_at_period_end": cancel_at_period_end,
                "items": {
                    "data": [
                        {
                            "id": "si_test123",
                            "price": {"id": price_id},
                            "current_period_end": current_period_end,
                        }
                    ]
                },
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_checkout_session():
    """Create a mock Checkout Session response."""

    def _create(
        id: str = "cs_test123",
        mode: str = "subscription",
        url: str | None = "https://checkout.stripe.com/c/pay/cs_test123",
        customer: str | None = "cus_test123",
        subscription: str | None = "sub_test123",
        payment_intent: str | None = None,
        client_reference_id: str | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "checkout.session",
                "mode": mode,
                "url": url,
                "customer": customer,
                "subscription": subscription,
                "payment_intent": payment_intent,
                "client_reference_id": client_reference_id,
                "payment_status": "paid",
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_invoice():
    """Create a mock Invoice response."""

    def _create(
        id: str = "in_test123",
        status: str = "paid",
        customer: str = "cus_test123",
        subscription: str | None = "sub_test123",
        billing_reason: str = "subscription_cycle",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "invoice",
                "status": status,
                "customer": customer,
                "subscription": subscription,
                "billing_reason": billing_reason,
                "attempt_count": 1,
                "amount_paid": 2000,
                "currency": "usd",
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(
            message=message,
            param=None,
            code=code,
        )
        # decline_code is set directly on the error object
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such subscription: 'sub_missing'",
        param: str | None = "id",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(
            message=message,
            param=param,
            code=code,
        )

    return _create


@pytest.fixture
def rate_limit_error():
    """Create a Stripe RateLimitError."""
    return stripe.RateLimitError(
        message="Too many requests hit the API too quickly.",
    )


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""
    return stripe.APIConnectionError(
        message="Could not connect to Stripe.",
    )


@pytest.fixture
def api_error():
    """Create a Stripe APIError."""
    return stripe.APIError(
        message="Something went wrong on Stripe's end.",
    )


@pytest.fixture
def authentication_error():
    """Create a Stripe AuthenticationError."""
    return stripe.AuthenticationError(
        message="Invalid API Key provided.",
    )
