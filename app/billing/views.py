"""
DRF views for the billing app.

This module provides API views for:
- Credit balance and ledger history
- Usage debits
- Checkout session creation (plans and credit packs)
- Customer portal access

Related files:
    - services/: CheckoutService, UsageService
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Stripe webhook endpoint (not DRF)

Endpoints:
    GET  /api/v1/billing/credits/ - Credit balance and plan summary
    GET  /api/v1/billing/credits/transactions/ - Ledger history (paginated)
    POST /api/v1/billing/credits/usage/ - Debit usage credits
    POST /api/v1/billing/checkout/ - Create checkout session
    POST /api/v1/billing/portal/ - Create customer portal session

Error responses:
    Billing exceptions render via to_dict() with:
    - 402: insufficient credit balance, payment declined
    - 404: no billing customer
    - 502: permanent provider error
    - 503: transient provider error (client may retry)
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError

from billing.adapters import StripeAdapter
from billing.config import get_billing_config
from billing.exceptions import (
    CustomerNotFoundError,
    PaymentDeclinedError,
    ProviderError,
    ProviderTransientError,
)
from billing.ledger.exceptions import InsufficientBalanceError
from billing.ledger.models import CreditTransaction
from billing.ledger.services import CreditLedger
from billing.models import BillingCustomer
from billing.serializers import (
    CheckoutRequestSerializer,
    CreditBalanceSerializer,
    CreditTransactionSerializer,
    SessionUrlSerializer,
    UsageRequestSerializer,
    UsageResponseSerializer,
)
from billing.services import CheckoutService, UsageService

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def get_provider():
    """Provider client for API views (patched in tests)."""
    return StripeAdapter(get_billing_config())


def error_status(exc: BaseApplicationError) -> int:
    """HTTP status for a billing exception."""
    if isinstance(exc, (InsufficientBalanceError, PaymentDeclinedError)):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(exc, CustomerNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ProviderTransientError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, ProviderError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


def error_response(exc: BaseApplicationError) -> Response:
    response_status = error_status(exc)
    log = logger.error if response_status >= 500 else logger.info
    log(
        f"Billing request failed: {exc.error_code}",
        extra={"error_code": exc.error_code, "status": response_status},
    )
    return Response(exc.to_dict(), status=response_status)


def customer_for(user) -> BillingCustomer | None:
    return BillingCustomer.objects.filter(user=user).first()


# =============================================================================
# Credits
# =============================================================================


class CreditBalanceView(APIView):
    """
    Current credit balance and plan summary.

    GET /api/v1/billing/credits/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_credit_balance",
        summary="Get credit balance",
        responses={200: CreditBalanceSerializer},
        tags=["Billing - Credits"],
    )
    def get(self, request):
        customer = customer_for(request.user)
        balance = CreditLedger.balance(customer) if customer else 0
        return Response(CreditBalanceSerializer.for_customer(customer, balance))


class CreditTransactionListView(generics.ListAPIView):
    """
    Ledger history for the current user, newest first.

    GET /api/v1/billing/credits/transactions/?page=2
    """

    permission_classes = [IsAuthenticated]
    serializer_class = CreditTransactionSerializer

    def get_queryset(self):
        customer = customer_for(self.request.user)
        if customer is None:
            return CreditTransaction.objects.none()
        return CreditTransaction.objects.for_customer(customer).order_by("-sequence")

    @extend_schema(
        operation_id="list_credit_transactions",
        summary="List credit transactions",
        tags=["Billing - Credits"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class UsageView(APIView):
    """
    Debit usage credits.

    POST /api/v1/billing/credits/usage/

    Request body:
        {"quantity": 3, "description": "Image generation"}

    Response:
        200: {"balance": 67}
        402: {"error": ..., "error_code": "INSUFFICIENT_BALANCE",
              "details": {"required": 3, "available": 1, ...}}
        404: No billing customer
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="record_usage",
        summary="Record usage",
        request=UsageRequestSerializer,
        responses={
            200: UsageResponseSerializer,
            402: OpenApiResponse(description="Insufficient credit balance"),
            404: OpenApiResponse(description="No billing customer"),
        },
        tags=["Billing - Credits"],
    )
    def post(self, request):
        serializer = UsageRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            customer = customer_for(request.user)
            if customer is None:
                raise CustomerNotFoundError(
                    "No billing account for this user",
                    details={"user_id": request.user.pk},
                )
            config = get_billing_config()
            balance = UsageService(config, get_provider()).record_usage(
                customer,
                serializer.validated_data["quantity"],
                serializer.validated_data["description"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(UsageResponseSerializer({"balance": balance}).data)


# =============================================================================
# Hosted Sessions
# =============================================================================


class CheckoutView(APIView):
    """
    Create a Stripe Checkout session.

    POST /api/v1/billing/checkout/

    Request body:
        {"mode": "subscription", "price_id": "price_pro_monthly"}
        {"mode": "credits", "pack": "starter"}

    Returns:
        {"id": "cs_...", "url": "https://checkout.stripe.com/..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_checkout_session",
        summary="Create checkout session",
        request=CheckoutRequestSerializer,
        responses={
            201: SessionUrlSerializer,
            400: OpenApiResponse(description="Unknown price or pack"),
            502: OpenApiResponse(description="Provider rejected the request"),
            503: OpenApiResponse(description="Provider unavailable, retry"),
        },
        tags=["Billing - Checkout"],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        service = CheckoutService(get_billing_config(), get_provider())
        try:
            if data["mode"] == CheckoutRequestSerializer.MODE_SUBSCRIPTION:
                session = service.start_subscription_checkout(
                    request.user, data["price_id"], request_id=data.get("request_id")
                )
            else:
                session = service.start_credit_checkout(
                    request.user, data["pack"], request_id=data.get("request_id")
                )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            SessionUrlSerializer({"id": session.id, "url": session.url}).data,
            status=status.HTTP_201_CREATED,
        )


class PortalView(APIView):
    """
    Create a Stripe customer portal session.

    POST /api/v1/billing/portal/

    Returns:
        {"id": "bps_...", "url": "https://billing.stripe.com/..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_portal_session",
        summary="Create customer portal session",
        request=None,
        responses={
            201: SessionUrlSerializer,
            404: OpenApiResponse(description="No billing customer"),
        },
        tags=["Billing - Checkout"],
    )
    def post(self, request):
        service = CheckoutService(get_billing_config(), get_provider())
        try:
            session = service.create_portal_session(request.user)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            SessionUrlSerializer({"id": session.id, "url": session.url}).data,
            status=status.HTTP_201_CREATED,
        )
