"""
Tests for billing models.

Tests cover:
- BillingCustomer defaults, access and uniqueness
- WebhookEvent status helpers and payload accessors
"""

import pytest
from django.db import IntegrityError, transaction

from billing.models import BillingCustomer, WebhookEvent
from billing.state_machines import SubscriptionStatus, WebhookEventStatus
from billing.tests.factories import BillingCustomerFactory, WebhookEventFactory


class TestBillingCustomer:
    def test_defaults(self, db, settings):
        settings.BILLING_BASELINE_TIER = "starter"

        customer = BillingCustomer.objects.create()

        assert customer.subscription_status == SubscriptionStatus.NONE
        assert customer.plan_tier == "starter"
        assert customer.cancel_at_period_end is False
        assert customer.metadata == {}

    @pytest.mark.parametrize(
        "status,expected",
        [
            (SubscriptionStatus.ACTIVE, True),
            (SubscriptionStatus.TRIALING, True),
            (SubscriptionStatus.PAST_DUE, False),
            (SubscriptionStatus.CANCELED, False),
            (SubscriptionStatus.NONE, False),
        ],
    )
    def test_has_active_access(self, db, status, expected):
        customer = BillingCustomerFactory(subscription_status=status)

        assert customer.has_active_access is expected

    def test_stripe_customer_id_unique(self, db):
        BillingCustomerFactory(stripe_customer_id="cus_same")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                BillingCustomerFactory(stripe_customer_id="cus_same")

    def test_many_customers_without_provider_reference(self, db):
        BillingCustomerFactory(stripe_customer_id=None)
        BillingCustomerFactory(stripe_customer_id=None)

        assert BillingCustomer.objects.filter(stripe_customer_id__isnull=True).count() == 2

    def test_set_meta_persists(self, db):
        customer = BillingCustomerFactory()

        customer.set_meta("product_name", "Pro monthly")
        customer.refresh_from_db()

        assert customer.metadata == {"product_name": "Pro monthly"}


class TestSubscriptionStatus:
    def test_from_provider_known(self):
        assert SubscriptionStatus.from_provider("past_due") == SubscriptionStatus.PAST_DUE

    def test_from_provider_unknown_uses_default(self):
        assert SubscriptionStatus.from_provider("mystery") == SubscriptionStatus.NONE
        assert (
            SubscriptionStatus.from_provider(None, default=SubscriptionStatus.ACTIVE)
            == SubscriptionStatus.ACTIVE
        )


class TestWebhookEvent:
    def test_str(self, db):
        event = WebhookEventFactory(stripe_event_id="evt_1", event_type="invoice.paid")

        assert str(event) == "WebhookEvent(evt_1, invoice.paid)"

    def test_stripe_event_id_unique(self, db):
        WebhookEventFactory(stripe_event_id="evt_same")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                WebhookEventFactory(stripe_event_id="evt_same")

    def test_mark_processed_clears_error(self, db):
        event = WebhookEventFactory(
            status=WebhookEventStatus.FAILED, error_message="boom", retry_count=1
        )

        event.mark_processed()
        event.save()
        event.refresh_from_db()

        assert event.is_processed
        assert event.processed_at is not None
        assert event.error_message is None
        assert event.retry_count == 1

    def test_record_failure_increments_retry_count(self, db):
        event = WebhookEventFactory()

        WebhookEvent.record_failure(event.pk, "first")
        WebhookEvent.record_failure(event.pk, "second")
        event.refresh_from_db()

        assert event.is_failed
        assert event.retry_count == 2
        assert event.error_message == "second"

    def test_can_retry(self, db):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)

        assert event.can_retry(max_retries=3) is True
        assert event.can_retry(max_retries=2) is False

    def test_payload_accessors(self, db):
        event = WebhookEventFactory(
            payload={"id": "evt_1", "data": {"object": {"id": "in_1"}}}
        )

        assert event.get_object() == {"id": "in_1"}
        assert event.get_object_id() == "in_1"

    def test_payload_accessors_tolerate_bad_shapes(self, db):
        event = WebhookEventFactory(payload={"data": {"object": "in_1"}})

        assert event.get_object() == {}
        assert event.get_object_id() is None
