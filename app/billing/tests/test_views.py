"""
Tests for the billing REST API.

Tests cover:
- Credit balance and transaction history
- Usage debits (including 402 on insufficient balance)
- Checkout and portal session creation
- Authentication requirements
"""

from unittest.mock import patch

import pytest
from django.urls import reverse

from billing.exceptions import PaymentDeclinedError, ProviderUnavailableError
from billing.ledger.services import CreditLedger
from billing.tests.factories import BillingCustomerFactory


@pytest.fixture
def provider(mock_provider):
    """Patch the provider used by the API views."""
    with patch("billing.views.get_provider", return_value=mock_provider):
        yield mock_provider


# =============================================================================
# Authentication
# =============================================================================


class TestAuthentication:
    @pytest.mark.parametrize(
        "method,url_name",
        [
            ("get", "billing:credit-balance"),
            ("get", "billing:credit-transactions"),
            ("post", "billing:credit-usage"),
            ("post", "billing:checkout"),
            ("post", "billing:portal"),
        ],
    )
    def test_requires_authentication(self, db, api_client, method, url_name):
        response = getattr(api_client, method)(reverse(url_name))

        assert response.status_code in (401, 403)


# =============================================================================
# Credits
# =============================================================================


class TestCreditBalanceView:
    def test_returns_balance_and_plan(self, db, auth_client, billing_settings, subscribed_customer):
        CreditLedger.credit(subscribed_customer, 120)

        response = auth_client.get(reverse("billing:credit-balance"))

        assert response.status_code == 200
        assert response.data["balance"] == 120
        assert response.data["plan_tier"] == "pro"
        assert response.data["subscription_status"] == "active"
        assert response.data["has_active_access"] is True

    def test_user_without_customer_gets_baseline(self, db, auth_client, billing_settings):
        response = auth_client.get(reverse("billing:credit-balance"))

        assert response.status_code == 200
        assert response.data["balance"] == 0
        assert response.data["plan_tier"] == "free"
        assert response.data["has_active_access"] is False


class TestCreditTransactionListView:
    def test_lists_newest_first(self, db, auth_client, customer):
        CreditLedger.credit(customer, 100, description="pack")
        CreditLedger.debit(customer, 10, "usage")

        response = auth_client.get(reverse("billing:credit-transactions"))

        assert response.status_code == 200
        results = response.data["results"]
        assert [row["description"] for row in results] == ["usage", "pack"]
        assert results[0]["amount"] == -10
        assert results[0]["balance_after"] == 90

    def test_excludes_other_customers(self, db, auth_client, customer):
        CreditLedger.credit(BillingCustomerFactory(), 100, description="someone else")

        response = auth_client.get(reverse("billing:credit-transactions"))

        assert response.data["results"] == []

    def test_user_without_customer_gets_empty_list(self, db, auth_client):
        response = auth_client.get(reverse("billing:credit-transactions"))

        assert response.status_code == 200
        assert response.data["count"] == 0


class TestUsageView:
    def test_debits_credits(self, db, auth_client, billing_settings, provider, customer):
        CreditLedger.credit(customer, 10)

        response = auth_client.post(
            reverse("billing:credit-usage"),
            {"quantity": 3, "description": "Image generation"},
            format="json",
        )

        assert response.status_code == 200
        assert response.data == {"balance": 7}
        assert CreditLedger.balance(customer) == 7

    def test_insufficient_balance_returns_402(
        self, db, auth_client, billing_settings, provider, customer
    ):
        CreditLedger.credit(customer, 2)

        response = auth_client.post(
            reverse("billing:credit-usage"), {"quantity": 3}, format="json"
        )

        assert response.status_code == 402
        assert response.data["error_code"] == "INSUFFICIENT_BALANCE"
        assert response.data["details"]["required"] == 3
        assert response.data["details"]["available"] == 2
        assert CreditLedger.balance(customer) == 2

    def test_user_without_customer_returns_404(self, db, auth_client, billing_settings, provider):
        response = auth_client.post(
            reverse("billing:credit-usage"), {"quantity": 1}, format="json"
        )

        assert response.status_code == 404
        assert response.data["error_code"] == "CUSTOMER_NOT_FOUND"

    @pytest.mark.parametrize("quantity", [0, -1, "many"])
    def test_invalid_quantity_returns_400(self, db, auth_client, customer, quantity):
        response = auth_client.post(
            reverse("billing:credit-usage"), {"quantity": quantity}, format="json"
        )

        assert response.status_code == 400
        assert "quantity" in response.data


# =============================================================================
# Hosted Sessions
# =============================================================================


class TestCheckoutView:
    def test_subscription_checkout(self, db, auth_client, billing_settings, provider, customer):
        response = auth_client.post(
            reverse("billing:checkout"),
            {"mode": "subscription", "price_id": "price_pro_monthly", "request_id": "r1"},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["id"] == "cs_created123"
        assert response.data["url"].startswith("https://checkout.stripe.com/")
        params = provider.create_checkout_session.call_args.args[0]
        assert params.client_reference_id == str(customer.pk)

    def test_credit_checkout(self, db, auth_client, billing_settings, provider, customer):
        response = auth_client.post(
            reverse("billing:checkout"),
            {"mode": "credits", "pack": "starter"},
            format="json",
        )

        assert response.status_code == 201
        params = provider.create_checkout_session.call_args.args[0]
        assert params.mode == "payment"
        assert params.metadata["credits"] == "100"

    @pytest.mark.parametrize(
        "body,field",
        [
            ({"mode": "subscription"}, "price_id"),
            ({"mode": "subscription", "price_id": "price_nope"}, "price_id"),
            ({"mode": "credits"}, "pack"),
            ({"mode": "credits", "pack": "mega"}, "pack"),
            ({"mode": "lifetime"}, "mode"),
        ],
    )
    def test_invalid_request_returns_400(
        self, db, auth_client, billing_settings, provider, body, field
    ):
        response = auth_client.post(reverse("billing:checkout"), body, format="json")

        assert response.status_code == 400
        assert field in response.data
        provider.create_checkout_session.assert_not_called()

    def test_transient_provider_error_returns_503(
        self, db, auth_client, billing_settings, provider, customer
    ):
        provider.create_checkout_session.side_effect = ProviderUnavailableError("down")

        response = auth_client.post(
            reverse("billing:checkout"),
            {"mode": "subscription", "price_id": "price_pro_monthly"},
            format="json",
        )

        assert response.status_code == 503
        assert response.data["error_code"] == "PROVIDER_UNAVAILABLE"

    def test_declined_payment_returns_402(
        self, db, auth_client, billing_settings, provider, customer
    ):
        provider.create_checkout_session.side_effect = PaymentDeclinedError(
            "Your card was declined.", decline_code="insufficient_funds"
        )

        response = auth_client.post(
            reverse("billing:checkout"),
            {"mode": "subscription", "price_id": "price_pro_monthly"},
            format="json",
        )

        assert response.status_code == 402
        assert response.data["details"]["category"] == "insufficient_funds"


class TestPortalView:
    def test_creates_portal_session(self, db, auth_client, billing_settings, provider, customer):
        response = auth_client.post(reverse("billing:portal"))

        assert response.status_code == 201
        assert response.data["id"] == "bps_created123"

    def test_user_without_customer_returns_404(self, db, auth_client, billing_settings, provider):
        response = auth_client.post(reverse("billing:portal"))

        assert response.status_code == 404
