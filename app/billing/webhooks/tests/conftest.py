"""
Pytest fixtures for webhook tests.

Usage:
    def test_delivery(intake, signed):
        payload, signature = signed(build_event("invoice.paid", invoice_object()))
        result = intake.receive(payload, signature)
"""

import pytest

from billing.adapters import StripeAdapter
from billing.tests.factories import encode_event, sign_payload
from billing.webhooks.intake import WebhookIntake


@pytest.fixture
def signing_provider(billing_config, mock_provider):
    """
    Mock provider whose signature verification is the real Stripe check.

    Retrieve calls stay mocked so tests control re-fetched objects.
    """
    adapter = StripeAdapter(billing_config)
    mock_provider.verify_webhook_signature.side_effect = adapter.verify_webhook_signature
    return mock_provider


@pytest.fixture
def intake(billing_config, signing_provider):
    return WebhookIntake(billing_config, signing_provider)


@pytest.fixture
def signed(billing_config):
    """Encode an event and sign it with the configured webhook secret."""

    def _signed(event: dict, secret: str | None = None) -> tuple[bytes, str]:
        payload = encode_event(event)
        return payload, sign_payload(payload, secret or billing_config.webhook_secret)

    return _signed
