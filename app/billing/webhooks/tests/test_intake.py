"""
Tests for WebhookIntake.

Tests cover:
- Signature checks (missing, invalid, wrong secret)
- Exactly-once processing and duplicate deliveries
- Failure recording and rollback of partial side effects
- Async (queued) mode
- Unknown event types
"""

import dataclasses
import logging
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from django.db import connection, connections

from billing.adapters.base import SubscriptionResult
from billing.exceptions import (
    AuthenticationError,
    BillingError,
    MalformedPayloadError,
    ProviderUnavailableError,
)
from billing.ledger.models import CreditTransaction
from billing.ledger.services import CreditLedger
from billing.models import BillingCustomer, WebhookEvent
from billing.state_machines import SubscriptionStatus, WebhookEventStatus
from billing.tests.factories import (
    BillingCustomerFactory,
    WebhookEventFactory,
    build_event,
    checkout_session_object,
    encode_event,
    invoice_object,
    sign_payload,
    subscription_object,
)
from billing.webhooks.intake import IntakeOutcome, WebhookIntake
from core.services import ServiceResult


# =============================================================================
# Parsing
# =============================================================================


class TestParse:
    def test_missing_signature(self, db, intake):
        with pytest.raises(AuthenticationError) as exc_info:
            intake.receive(b"{}", None)

        assert exc_info.value.kind == AuthenticationError.MISSING_SIGNATURE
        assert WebhookEvent.objects.count() == 0

    def test_empty_signature_is_missing(self, db, intake):
        with pytest.raises(AuthenticationError) as exc_info:
            intake.receive(b"{}", "")

        assert exc_info.value.kind == AuthenticationError.MISSING_SIGNATURE

    def test_wrong_secret_rejected(self, db, intake, signed):
        payload, signature = signed(
            build_event("invoice.paid", invoice_object()), secret="whsec_other"
        )

        with pytest.raises(AuthenticationError) as exc_info:
            intake.receive(payload, signature)

        assert exc_info.value.kind == AuthenticationError.INVALID_SIGNATURE
        assert WebhookEvent.objects.count() == 0

    def test_stale_timestamp_rejected(self, db, intake, billing_config):
        payload = encode_event(build_event("invoice.paid", invoice_object()))
        signature = sign_payload(
            payload, billing_config.webhook_secret, timestamp=int(time.time()) - 3600
        )

        with pytest.raises(AuthenticationError):
            intake.receive(payload, signature)

    def test_signed_event_without_id_is_malformed(self, db, intake, billing_config):
        payload = b'{"type": "invoice.paid", "data": {"object": {}}}'
        signature = sign_payload(payload, billing_config.webhook_secret)

        with pytest.raises(MalformedPayloadError):
            intake.receive(payload, signature)

        assert WebhookEvent.objects.count() == 0


# =============================================================================
# Processing
# =============================================================================


class TestReceive:
    def test_processes_event_inline(self, db, intake, signed, subscribed_customer):
        event = build_event(
            "customer.subscription.updated", subscription_object(status="past_due")
        )

        result = intake.receive(*signed(event))

        assert result.outcome == IntakeOutcome.PROCESSED
        assert result.event_id == event["id"]
        webhook_event = WebhookEvent.objects.get(stripe_event_id=event["id"])
        assert webhook_event.status == WebhookEventStatus.PROCESSED
        assert webhook_event.processed_at is not None
        assert webhook_event.payload == event
        subscribed_customer.refresh_from_db()
        assert subscribed_customer.subscription_status == SubscriptionStatus.PAST_DUE

    def test_subscription_checkout_creates_active_customer(
        self, db, intake, signed, caplog
    ):
        # Info logging on so structured log records are actually built
        caplog.set_level(logging.INFO, logger="billing")
        event = build_event(
            "checkout.session.completed",
            checkout_session_object(
                customer="cus_new",
                subscription="sub_new",
                metadata={"price_id": "price_pro_monthly"},
            ),
        )

        result = intake.receive(*signed(event))

        assert result.outcome == IntakeOutcome.PROCESSED
        customer = BillingCustomer.objects.get(stripe_customer_id="cus_new")
        assert customer.subscription_status == SubscriptionStatus.ACTIVE
        assert customer.stripe_subscription_id == "sub_new"
        assert customer.plan_tier == "pro"
        assert WebhookEvent.objects.get(stripe_event_id=event["id"]).is_processed

    def test_duplicate_delivery_applies_once(self, db, intake, signed, subscribed_customer):
        event = build_event("invoice.paid", invoice_object(id="in_dup"))

        first = intake.receive(*signed(event))
        second = intake.receive(*signed(event))

        assert first.outcome == IntakeOutcome.PROCESSED
        assert second.outcome == IntakeOutcome.DUPLICATE
        assert second.webhook_event_id == first.webhook_event_id
        assert CreditLedger.balance(subscribed_customer) == 500
        assert WebhookEvent.objects.filter(stripe_event_id=event["id"]).count() == 1

    def test_unknown_event_type_is_ignored_but_recorded(
        self, db, intake, signed, subscribed_customer
    ):
        event = build_event("charge.refunded", {"id": "ch_1", "customer": "cus_test123"})

        result = intake.receive(*signed(event))

        assert result.outcome == IntakeOutcome.IGNORED
        assert WebhookEvent.objects.get(stripe_event_id=event["id"]).is_processed
        subscribed_customer.refresh_from_db()
        assert subscribed_customer.subscription_status == SubscriptionStatus.ACTIVE

    def test_to_dict(self, db, intake, signed):
        event = build_event("charge.refunded", {"id": "ch_1"}, event_id="evt_dict")

        data = intake.receive(*signed(event)).to_dict()

        assert data["status"] == "ignored"
        assert data["event_id"] == "evt_dict"
        assert data["event_type"] == "charge.refunded"
        assert data["webhook_event_id"]


class TestFailures:
    def test_handler_error_marks_event_failed(
        self, db, refetch_config, signing_provider, signed, subscribed_customer
    ):
        signing_provider.retrieve_subscription.side_effect = ProviderUnavailableError(
            "Stripe is down"
        )
        intake = WebhookIntake(refetch_config, signing_provider)
        event = build_event(
            "customer.subscription.updated", subscription_object(status="past_due")
        )

        with pytest.raises(ProviderUnavailableError):
            intake.receive(*signed(event))

        webhook_event = WebhookEvent.objects.get(stripe_event_id=event["id"])
        assert webhook_event.status == WebhookEventStatus.FAILED
        assert webhook_event.retry_count == 1
        assert "ProviderUnavailableError" in webhook_event.error_message
        subscribed_customer.refresh_from_db()
        assert subscribed_customer.subscription_status == SubscriptionStatus.ACTIVE

    def test_partial_side_effects_roll_back(self, db, billing_config, signing_provider, signed):
        customer = BillingCustomerFactory(stripe_customer_id="cus_test123")

        def credit_then_fail(envelope, context):
            CreditLedger.credit(customer, 100, external_ref="pi_partial")
            raise RuntimeError("boom after write")

        router = MagicMock()
        router.dispatch.side_effect = credit_then_fail
        intake = WebhookIntake(billing_config, signing_provider, router=router)
        event = build_event("invoice.paid", invoice_object())

        with pytest.raises(RuntimeError):
            intake.receive(*signed(event))

        assert CreditTransaction.objects.filter(external_ref="pi_partial").count() == 0
        assert CreditLedger.balance(customer) == 0
        assert WebhookEvent.objects.get(stripe_event_id=event["id"]).is_failed

    def test_failed_service_result_marks_event_failed(
        self, db, billing_config, signing_provider, signed
    ):
        router = MagicMock()
        router.dispatch.return_value = ServiceResult.failure(
            "Cannot apply", error_code="NOT_APPLICABLE"
        )
        intake = WebhookIntake(billing_config, signing_provider, router=router)
        event = build_event("invoice.paid", invoice_object())

        with pytest.raises(BillingError) as exc_info:
            intake.receive(*signed(event))

        assert exc_info.value.error_code == "NOT_APPLICABLE"
        assert WebhookEvent.objects.get(stripe_event_id=event["id"]).is_failed

    def test_redelivery_after_failure_reprocesses(
        self, db, refetch_config, signing_provider, signed, subscribed_customer
    ):
        signing_provider.retrieve_subscription.side_effect = ProviderUnavailableError(
            "Stripe is down"
        )
        intake = WebhookIntake(refetch_config, signing_provider)
        event = build_event(
            "customer.subscription.updated", subscription_object(status="past_due")
        )
        with pytest.raises(ProviderUnavailableError):
            intake.receive(*signed(event))

        signing_provider.retrieve_subscription.side_effect = None
        signing_provider.retrieve_subscription.return_value = (
            SubscriptionResult.from_dict(subscription_object(status="past_due"))
        )
        result = intake.receive(*signed(event))

        assert result.outcome == IntakeOutcome.PROCESSED
        webhook_event = WebhookEvent.objects.get(stripe_event_id=event["id"])
        assert webhook_event.is_processed
        assert webhook_event.error_message is None
        assert webhook_event.retry_count == 1
        subscribed_customer.refresh_from_db()
        assert subscribed_customer.subscription_status == SubscriptionStatus.PAST_DUE


class TestProcess:
    def test_unknown_id_raises(self, db, intake):
        with pytest.raises(WebhookEvent.DoesNotExist):
            intake.process("00000000-0000-0000-0000-000000000000")

    def test_processed_event_is_skipped(self, db, intake):
        webhook_event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = intake.process(webhook_event.pk)

        assert result.outcome == IntakeOutcome.DUPLICATE

    def test_failure_never_downgrades_processed(self, db):
        webhook_event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        WebhookEvent.record_failure(webhook_event.pk, "late failure")

        webhook_event.refresh_from_db()
        assert webhook_event.is_processed
        assert webhook_event.retry_count == 0


class TestAsyncMode:
    def test_queues_instead_of_processing(self, db, billing_config, signing_provider, signed):
        config = dataclasses.replace(billing_config, process_async=True)
        intake = WebhookIntake(config, signing_provider)
        event = build_event("invoice.paid", invoice_object())

        with patch("billing.tasks.process_webhook_event.delay") as mock_delay:
            result = intake.receive(*signed(event))

        webhook_event = WebhookEvent.objects.get(stripe_event_id=event["id"])
        assert result.outcome == IntakeOutcome.QUEUED
        assert webhook_event.status == WebhookEventStatus.PENDING
        mock_delay.assert_called_once_with(str(webhook_event.pk))

    def test_processed_duplicate_not_queued(self, db, billing_config, signing_provider, signed):
        config = dataclasses.replace(billing_config, process_async=True)
        intake = WebhookIntake(config, signing_provider)
        event = build_event("invoice.paid", invoice_object())
        WebhookEventFactory(
            stripe_event_id=event["id"],
            event_type="invoice.paid",
            status=WebhookEventStatus.PROCESSED,
        )

        with patch("billing.tasks.process_webhook_event.delay") as mock_delay:
            result = intake.receive(*signed(event))

        assert result.outcome == IntakeOutcome.DUPLICATE
        mock_delay.assert_not_called()


# =============================================================================
# Concurrency (PostgreSQL only; SQLite ignores select_for_update)
# =============================================================================


@pytest.mark.postgres
@pytest.mark.django_db(transaction=True)
@pytest.mark.skipif(
    connection.vendor != "postgresql",
    reason="Row locking requires PostgreSQL",
)
class TestConcurrentDelivery:
    def test_concurrent_processing_runs_handler_once(self, billing_config, mock_provider):
        customer = BillingCustomerFactory(
            stripe_customer_id="cus_test123",
            subscription_status=SubscriptionStatus.ACTIVE,
            plan_tier="pro",
        )
        event = build_event("invoice.paid", invoice_object(id="in_race"))
        webhook_event = WebhookEventFactory(
            stripe_event_id=event["id"], event_type="invoice.paid", payload=event
        )
        intake = WebhookIntake(billing_config, mock_provider)

        outcomes = []
        barrier = threading.Barrier(4)

        def worker():
            try:
                barrier.wait()
                outcomes.append(intake.process(webhook_event.pk).outcome)
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(IntakeOutcome.PROCESSED) == 1
        assert outcomes.count(IntakeOutcome.DUPLICATE) == 3
        assert CreditLedger.balance(customer) == 500

    def test_concurrent_deliveries_credit_once(self, billing_config, signing_provider):
        customer = BillingCustomerFactory(stripe_customer_id="cus_test123")
        event = build_event(
            "checkout.session.completed",
            checkout_session_object(
                mode="payment",
                subscription=None,
                payment_intent="pi_race",
                client_reference_id=str(customer.pk),
                metadata={"type": "credit_purchase", "credits": "50"},
            ),
        )
        payload = encode_event(event)
        signature = sign_payload(payload, billing_config.webhook_secret)
        intake = WebhookIntake(billing_config, signing_provider)

        outcomes = []
        barrier = threading.Barrier(4)

        def worker():
            try:
                barrier.wait()
                outcomes.append(intake.receive(payload, signature).outcome)
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(IntakeOutcome.PROCESSED) == 1
        assert outcomes.count(IntakeOutcome.DUPLICATE) == 3
        assert CreditLedger.balance(customer) == 50
        assert CreditTransaction.objects.filter(customer=customer).count() == 1
        assert WebhookEvent.objects.filter(stripe_event_id=event["id"]).count() == 1
