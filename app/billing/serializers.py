"""
DRF serializers for the billing API.

This module provides serializers for:
- Credit balance and ledger history
- Usage debits
- Checkout and customer-portal session requests

Related files:
    - views.py: Billing API views
    - ledger/models.py: CreditTransaction

Usage:
    serializer = CreditTransactionSerializer(transactions, many=True)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from billing.config import get_billing_config
from billing.ledger.models import CreditTransaction
from billing.models import BillingCustomer


class CreditBalanceSerializer(serializers.Serializer):
    """
    Credit balance and plan summary for the current user.

    Fields:
        balance: Current credit balance
        plan_tier: Projected plan tier
        subscription_status: Projected subscription status
        has_active_access: Whether the subscription grants access
    """

    balance = serializers.IntegerField(read_only=True)
    plan_tier = serializers.CharField(read_only=True)
    subscription_status = serializers.CharField(read_only=True)
    cancel_at_period_end = serializers.BooleanField(read_only=True)
    current_period_end = serializers.DateTimeField(read_only=True, allow_null=True)
    has_active_access = serializers.BooleanField(read_only=True)

    @classmethod
    def for_customer(cls, customer: BillingCustomer | None, balance: int) -> dict:
        """Build response data; a user without a billing record has nothing."""
        if customer is None:
            baseline = get_billing_config().baseline_tier
            return cls(
                {
                    "balance": 0,
                    "plan_tier": baseline,
                    "subscription_status": "none",
                    "cancel_at_period_end": False,
                    "current_period_end": None,
                    "has_active_access": False,
                }
            ).data
        return cls(
            {
                "balance": balance,
                "plan_tier": customer.plan_tier,
                "subscription_status": customer.subscription_status,
                "cancel_at_period_end": customer.cancel_at_period_end,
                "current_period_end": customer.current_period_end,
                "has_active_access": customer.has_active_access,
            }
        ).data


class CreditTransactionSerializer(serializers.ModelSerializer):
    """Ledger history row (read-only)."""

    class Meta:
        model = CreditTransaction
        fields = [
            "id",
            "amount",
            "balance_after",
            "kind",
            "description",
            "external_ref",
            "created_at",
        ]
        read_only_fields = fields


class UsageRequestSerializer(serializers.Serializer):
    """
    Usage debit request.

    Request body:
        {"quantity": 3, "description": "Image generation"}
    """

    quantity = serializers.IntegerField(min_value=1)
    description = serializers.CharField(max_length=255, required=False, default="")


class UsageResponseSerializer(serializers.Serializer):
    balance = serializers.IntegerField()


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Checkout request: a plan subscription or a credit pack.

    Request body:
        {"mode": "subscription", "price_id": "price_pro_monthly"}
        {"mode": "credits", "pack": "starter"}

    request_id (optional) makes a retried request reuse the same
    provider checkout session.
    """

    MODE_SUBSCRIPTION = "subscription"
    MODE_CREDITS = "credits"

    mode = serializers.ChoiceField(choices=[MODE_SUBSCRIPTION, MODE_CREDITS])
    price_id = serializers.CharField(max_length=255, required=False)
    pack = serializers.CharField(max_length=50, required=False)
    request_id = serializers.CharField(max_length=64, required=False)

    def validate(self, attrs: dict) -> dict:
        config = get_billing_config()
        if attrs["mode"] == self.MODE_SUBSCRIPTION:
            price_id = attrs.get("price_id")
            if not price_id:
                raise serializers.ValidationError(
                    {"price_id": "This field is required for subscription checkout."}
                )
            if config.tier_for_price(price_id) is None:
                raise serializers.ValidationError({"price_id": "Unknown plan price."})
        else:
            pack = attrs.get("pack")
            if not pack:
                raise serializers.ValidationError(
                    {"pack": "This field is required for credit checkout."}
                )
            if config.credit_pack(pack) is None:
                raise serializers.ValidationError({"pack": "Unknown credit pack."})
        return attrs


class SessionUrlSerializer(serializers.Serializer):
    """Hosted page session (checkout or portal)."""

    id = serializers.CharField()
    url = serializers.URLField()
