"""
Billing customer lookup and creation.

Provides BillingCustomerService, the single place that resolves provider
references to local BillingCustomer rows and creates new ones.

Usage:
    from billing.services import BillingCustomerService

    customer = BillingCustomerService.find(stripe_customer_id="cus_123")
    customer = BillingCustomerService.get_or_create_for_user(user, provider)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.exceptions import ConflictError
from core.services import BaseService

from billing.adapters.stripe_adapter import IdempotencyKeyGenerator
from billing.exceptions import CustomerNotFoundError
from billing.models import BillingCustomer

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from billing.adapters.base import PaymentProviderClient


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class BillingCustomerService(BaseService):
    """
    Service for resolving and creating billing customers.

    Resolution order for provider events:
    1. client_reference_id (the local customer UUID passed at checkout)
    2. stripe_customer_id
    """

    @classmethod
    def find(
        cls,
        client_reference_id: str | None = None,
        stripe_customer_id: str | None = None,
        for_update: bool = False,
    ) -> BillingCustomer | None:
        """
        Find a customer by local reference, then by provider reference.

        Args:
            client_reference_id: Local customer UUID (string)
            stripe_customer_id: Provider customer reference (cus_xxx)
            for_update: Lock the row (caller must be inside a transaction)

        Returns:
            The customer, or None if neither reference matches
        """
        queryset = BillingCustomer.objects.all()
        if for_update:
            queryset = queryset.select_for_update()

        local_id = _parse_uuid(client_reference_id)
        if local_id is not None:
            customer = queryset.filter(pk=local_id).first()
            if customer is not None:
                return customer

        if stripe_customer_id:
            return queryset.filter(stripe_customer_id=stripe_customer_id).first()

        return None

    @classmethod
    def get(
        cls,
        client_reference_id: str | None = None,
        stripe_customer_id: str | None = None,
        for_update: bool = False,
    ) -> BillingCustomer:
        """
        Like find(), but raises when nothing matches.

        Raises:
            CustomerNotFoundError: If no customer matches either reference
        """
        customer = cls.find(
            client_reference_id=client_reference_id,
            stripe_customer_id=stripe_customer_id,
            for_update=for_update,
        )
        if customer is None:
            raise CustomerNotFoundError(
                "No billing customer for the given reference",
                details={
                    "client_reference_id": client_reference_id,
                    "stripe_customer_id": stripe_customer_id,
                },
            )
        return customer

    @classmethod
    def resolve_or_create(
        cls,
        client_reference_id: str | None,
        stripe_customer_id: str | None,
        email: str | None = None,
    ) -> tuple[BillingCustomer, bool]:
        """
        Resolve a customer for a provider event, creating one if needed.

        The returned row is locked (select_for_update); call inside a
        transaction.

        Returns:
            Tuple of (customer, created)
        """
        logger = cls.get_logger()
        customer = cls.find(
            client_reference_id=client_reference_id,
            stripe_customer_id=stripe_customer_id,
            for_update=True,
        )
        if customer is not None:
            return customer, False

        try:
            with transaction.atomic():
                customer = BillingCustomer.objects.create(
                    stripe_customer_id=stripe_customer_id,
                    email=email or "",
                )
        except IntegrityError:
            # Created by a concurrent event for the same provider customer
            customer = BillingCustomer.objects.select_for_update().get(
                stripe_customer_id=stripe_customer_id
            )
            return customer, False

        logger.info(
            "Created billing customer from provider event",
            extra={
                "customer_id": str(customer.pk),
                "stripe_customer_id": stripe_customer_id,
            },
        )
        return customer, True

    @classmethod
    def get_or_create_for_user(
        cls,
        user: AbstractBaseUser,
        provider: PaymentProviderClient | None = None,
    ) -> BillingCustomer:
        """
        Return the user's billing customer, creating it on first use.

        When a provider is given and the customer has no provider
        reference yet, a provider customer is created with an idempotency
        key derived from the local id, so a retried call never creates two.

        Args:
            user: The local account
            provider: Provider client (omit to skip provider creation)

        Raises:
            ProviderError: If creating the provider customer fails
        """
        logger = cls.get_logger()

        customer = BillingCustomer.objects.filter(user=user).first()
        if customer is None:
            try:
                with transaction.atomic():
                    customer = BillingCustomer.objects.create(
                        user=user,
                        email=getattr(user, "email", "") or "",
                    )
            except IntegrityError:
                customer = BillingCustomer.objects.get(user=user)
            else:
                logger.info(
                    "Created billing customer for user",
                    extra={"customer_id": str(customer.pk), "user_id": user.pk},
                )

        if provider is not None and not customer.stripe_customer_id:
            result = provider.create_customer(
                email=customer.email or None,
                metadata={"billing_customer_id": str(customer.pk)},
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="create_customer",
                    entity_id=customer.pk,
                ),
            )
            customer.stripe_customer_id = result.id
            try:
                with transaction.atomic():
                    customer.save(update_fields=["stripe_customer_id", "updated_at"])
            except IntegrityError as e:
                raise ConflictError(
                    f"Provider customer {result.id} is linked to another record"
                ) from e
            logger.info(
                "Linked billing customer to provider customer",
                extra={
                    "customer_id": str(customer.pk),
                    "stripe_customer_id": result.id,
                },
            )

        return customer
