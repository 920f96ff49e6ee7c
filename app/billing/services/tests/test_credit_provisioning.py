"""
Tests for CreditProvisioningService.
"""

from unittest.mock import MagicMock

import pytest

from billing.ledger.exceptions import DuplicateExternalReference
from billing.ledger.models import CreditTransaction, TransactionKind
from billing.ledger.services import CreditLedger
from billing.services import CreditProvisioningService
from billing.signals import credits_purchased
from billing.tests.factories import BillingCustomerFactory


@pytest.fixture
def credits_receiver():
    handler = MagicMock()
    credits_purchased.connect(handler, weak=False)
    yield handler
    credits_purchased.disconnect(handler)


class TestFulfillCreditPurchase:
    def test_credits_customer(self, db, customer):
        balance = CreditProvisioningService.fulfill_credit_purchase(
            customer, 250, payment_ref="pi_250", description="Pack"
        )

        assert balance == 250
        entry = CreditTransaction.objects.get(external_ref="pi_250")
        assert entry.kind == TransactionKind.PURCHASE
        assert entry.description == "Pack"

    def test_default_description(self, db, customer):
        CreditProvisioningService.fulfill_credit_purchase(
            customer, 100, payment_ref="pi_100"
        )

        entry = CreditTransaction.objects.get(external_ref="pi_100")
        assert entry.description == "Credit purchase (100 credits)"

    def test_replay_returns_current_balance_without_signal(
        self, db, customer, credits_receiver, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            CreditProvisioningService.fulfill_credit_purchase(
                customer, 100, payment_ref="pi_once"
            )
        CreditLedger.debit(customer, 40)

        with django_capture_on_commit_callbacks(execute=True):
            balance = CreditProvisioningService.fulfill_credit_purchase(
                customer, 100, payment_ref="pi_once"
            )

        assert balance == 60
        credits_receiver.assert_called_once()

    def test_signal_carries_purchase_details(
        self, db, customer, credits_receiver, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            CreditProvisioningService.fulfill_credit_purchase(
                customer, 100, payment_ref="pi_sig", event_id="evt_sig"
            )

        kwargs = credits_receiver.call_args.kwargs
        assert kwargs["customer"] == customer
        assert kwargs["credits"] == 100
        assert kwargs["balance"] == 100
        assert kwargs["payment_ref"] == "pi_sig"
        assert kwargs["event_id"] == "evt_sig"

    def test_payment_ref_of_another_customer_raises(self, db, customer):
        other = BillingCustomerFactory()
        CreditProvisioningService.fulfill_credit_purchase(
            other, 100, payment_ref="pi_taken"
        )

        with pytest.raises(DuplicateExternalReference):
            CreditProvisioningService.fulfill_credit_purchase(
                customer, 100, payment_ref="pi_taken"
            )

    def test_non_positive_credits_rejected(self, db, customer):
        with pytest.raises(ValueError):
            CreditProvisioningService.fulfill_credit_purchase(
                customer, 0, payment_ref="pi_zero"
            )
