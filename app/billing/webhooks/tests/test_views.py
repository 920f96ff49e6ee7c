"""
Tests for the Stripe webhook endpoint.

Tests cover:
- Signature verification responses
- End-to-end processing through settings-built configuration
- Error handling (400 vs 500)
"""

from unittest.mock import MagicMock, patch

import pytest
from django.urls import reverse

from billing.exceptions import MalformedPayloadError
from billing.models import WebhookEvent
from billing.state_machines import SubscriptionStatus, WebhookEventStatus
from billing.tests.factories import (
    build_event,
    encode_event,
    sign_payload,
    subscription_object,
)


@pytest.fixture
def webhook_url():
    return reverse("billing:stripe-webhook")


@pytest.fixture
def post_event(client, webhook_url, billing_settings):
    """POST a signed event to the webhook endpoint."""

    def _post(event: dict, signature: str | None = None):
        payload = encode_event(event)
        headers = {}
        if signature is None:
            signature = sign_payload(payload, billing_settings.STRIPE_WEBHOOK_SECRET)
        if signature:
            headers["HTTP_STRIPE_SIGNATURE"] = signature
        return client.post(
            webhook_url,
            data=payload,
            content_type="application/json",
            **headers,
        )

    return _post


class TestStripeWebhookSignature:
    def test_missing_signature_returns_400(self, db, post_event):
        response = post_event(build_event("invoice.paid", {}), signature="")

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "WEBHOOK_AUTHENTICATION_FAILED"
        assert body["details"]["kind"] == "missing_signature"

    def test_invalid_signature_returns_400(self, db, post_event):
        response = post_event(
            build_event("invoice.paid", {}), signature="t=1,v1=deadbeef"
        )

        assert response.status_code == 400
        assert response.json()["details"]["kind"] == "invalid_signature"
        assert WebhookEvent.objects.count() == 0

    def test_get_not_allowed(self, client, webhook_url):
        response = client.get(webhook_url)

        assert response.status_code == 405


class TestStripeWebhookProcessing:
    def test_valid_event_returns_200_and_projects(
        self, db, post_event, subscribed_customer
    ):
        event = build_event(
            "customer.subscription.updated",
            subscription_object(status="canceled"),
        )

        response = post_event(event)

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        subscribed_customer.refresh_from_db()
        assert subscribed_customer.subscription_status == SubscriptionStatus.CANCELED

    def test_duplicate_returns_200(self, db, post_event, subscribed_customer):
        event = build_event("customer.subscription.deleted", subscription_object())

        post_event(event)
        response = post_event(event)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_unknown_event_returns_200(self, db, post_event):
        response = post_event(build_event("customer.created", {"id": "cus_1"}))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_async_mode_returns_queued(self, db, post_event, billing_settings):
        billing_settings.BILLING_WEBHOOK_PROCESS_ASYNC = True
        event = build_event("invoice.paid", {"id": "in_1", "customer": "cus_x"})

        with patch("billing.tasks.process_webhook_event.delay") as mock_delay:
            response = post_event(event)

        assert response.status_code == 200
        assert response.json()["status"] == "queued"
        mock_delay.assert_called_once()
        assert (
            WebhookEvent.objects.get(stripe_event_id=event["id"]).status
            == WebhookEventStatus.PENDING
        )


class TestStripeWebhookErrors:
    def test_malformed_payload_returns_400(self, db, client, webhook_url):
        intake = MagicMock()
        intake.receive.side_effect = MalformedPayloadError("Webhook body is not a JSON object")

        with patch("billing.webhooks.views.get_intake", return_value=intake):
            response = client.post(
                webhook_url,
                data=b"[]",
                content_type="application/json",
                HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
            )

        assert response.status_code == 400
        assert response.json()["error_code"] == "MALFORMED_PAYLOAD"

    def test_handler_failure_returns_500(self, db, client, webhook_url):
        intake = MagicMock()
        intake.receive.side_effect = RuntimeError("database exploded")

        with patch("billing.webhooks.views.get_intake", return_value=intake):
            response = client.post(
                webhook_url,
                data=b"{}",
                content_type="application/json",
                HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
            )

        assert response.status_code == 500
        body = response.json()
        assert body["error_code"] == "WEBHOOK_FAILED"
        assert "exploded" not in body["error"]
