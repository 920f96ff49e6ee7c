"""
Hosted checkout and customer-portal sessions.

CheckoutService starts provider-hosted flows for a local user. It never
changes subscription state or credits; those are applied when the
resulting checkout.session.completed / subscription / invoice events
arrive.

Usage:
    from billing.services import CheckoutService

    service = CheckoutService(config, provider)
    session = service.start_subscription_checkout(user, "price_pro_monthly")
    return redirect(session.url)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from core.services import BaseService

from billing.adapters.base import CreateCheckoutSessionParams
from billing.adapters.stripe_adapter import IdempotencyKeyGenerator
from billing.exceptions import CustomerNotFoundError
from billing.models import BillingCustomer
from billing.services.customer_service import BillingCustomerService
from billing.services.subscription_projector import CREDIT_PURCHASE_TYPE

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from billing.adapters.base import (
        CheckoutSessionResult,
        PaymentProviderClient,
        PortalSessionResult,
    )
    from billing.config import BillingConfig


class CheckoutService(BaseService):
    """
    Service for starting checkout and portal sessions.

    The local customer id is sent as client_reference_id and as
    billing_customer_id metadata so the completed checkout and the
    subscription it creates can be matched back to the same record.
    """

    def __init__(self, config: BillingConfig, provider: PaymentProviderClient):
        self.config = config
        self.provider = provider

    def start_subscription_checkout(
        self,
        user: AbstractBaseUser,
        price_id: str,
        request_id: str | None = None,
    ) -> CheckoutSessionResult:
        """
        Start a subscription checkout for a configured price.

        Args:
            user: The purchasing user
            price_id: Provider price (must be in BILLING_PRICE_TIERS)
            request_id: Client-supplied request id; repeating it repeats
                the same provider request (idempotent)

        Raises:
            ValueError: If price_id is not a configured plan price
            ProviderError: If the provider call fails
        """
        if self.config.tier_for_price(price_id) is None:
            raise ValueError(f"Unknown plan price: {price_id}")

        customer = BillingCustomerService.get_or_create_for_user(user, self.provider)
        metadata = {
            "billing_customer_id": str(customer.pk),
            "price_id": price_id,
        }
        return self._create_session(
            customer,
            mode="subscription",
            price_id=price_id,
            metadata=metadata,
            request_id=request_id,
        )

    def start_credit_checkout(
        self,
        user: AbstractBaseUser,
        pack_key: str,
        request_id: str | None = None,
    ) -> CheckoutSessionResult:
        """
        Start a one-time checkout for a credit pack.

        Raises:
            ValueError: If pack_key is not a configured credit pack
            ProviderError: If the provider call fails
        """
        pack = self.config.credit_pack(pack_key)
        if pack is None:
            raise ValueError(f"Unknown credit pack: {pack_key}")

        customer = BillingCustomerService.get_or_create_for_user(user, self.provider)
        metadata = {
            "billing_customer_id": str(customer.pk),
            "type": CREDIT_PURCHASE_TYPE,
            "pack": pack.key,
            "credits": str(pack.credits),
        }
        return self._create_session(
            customer,
            mode="payment",
            price_id=pack.price_id,
            metadata=metadata,
            request_id=request_id,
        )

    def _create_session(
        self,
        customer: BillingCustomer,
        mode: str,
        price_id: str,
        metadata: dict[str, str],
        request_id: str | None,
    ) -> CheckoutSessionResult:
        logger = self.get_logger()
        params = CreateCheckoutSessionParams(
            mode=mode,
            price_id=price_id,
            success_url=self.config.checkout_success_url,
            cancel_url=self.config.checkout_cancel_url,
            client_reference_id=str(customer.pk),
            customer_id=customer.stripe_customer_id,
            metadata=metadata,
            idempotency_key=IdempotencyKeyGenerator.generate(
                operation="checkout",
                entity_id=customer.pk,
                discriminator=f"{price_id}:{request_id or uuid.uuid4()}",
            ),
        )
        session = self.provider.create_checkout_session(params)
        logger.info(
            "Checkout session started",
            extra={
                "customer_id": str(customer.pk),
                "session_id": session.id,
                "mode": mode,
                "price_id": price_id,
            },
        )
        return session

    def create_portal_session(self, user: AbstractBaseUser) -> PortalSessionResult:
        """
        Create a customer-portal session for a user.

        Raises:
            CustomerNotFoundError: The user has no provider customer yet
            ProviderError: If the provider call fails
        """
        customer = BillingCustomer.objects.filter(user=user).first()
        if customer is None or not customer.stripe_customer_id:
            raise CustomerNotFoundError(
                "No billing account for this user",
                details={"user_id": user.pk},
            )
        session = self.provider.create_portal_session(
            customer.stripe_customer_id,
            return_url=self.config.portal_return_url,
        )
        self.get_logger().info(
            "Portal session created",
            extra={"customer_id": str(customer.pk), "session_id": session.id},
        )
        return session
