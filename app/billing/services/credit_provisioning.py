"""
Credit pack fulfillment.

CreditProvisioningService turns a completed one-time payment into ledger
credits. The ledger entry is keyed by the payment reference, so the
same payment can never be credited twice even if the event-level
idempotency check is bypassed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

from billing.ledger.models import TransactionKind
from billing.ledger.services import CreditLedger
from billing.ledger.types import CreditParams
from billing.signals import credits_purchased, send_on_commit

if TYPE_CHECKING:
    from billing.models import BillingCustomer


class CreditProvisioningService(BaseService):
    """Service for crediting purchased credit packs."""

    @classmethod
    def fulfill_credit_purchase(
        cls,
        customer: BillingCustomer,
        credits: int,
        payment_ref: str,
        description: str = "",
        event_id: str | None = None,
    ) -> int:
        """
        Credit a purchased pack to a customer.

        Args:
            customer: The paying customer
            credits: Credits in the pack (positive)
            payment_ref: Payment intent id, or checkout session id when the
                session carries no payment intent
            description: Ledger description
            event_id: Provider event that triggered fulfillment (for signals)

        Returns:
            The customer's balance after fulfillment

        Raises:
            ValueError: If credits is not a positive integer
            DuplicateExternalReference: If payment_ref was credited to
                another customer
        """
        logger = cls.get_logger()

        entry, created = CreditLedger.record(
            customer,
            CreditParams(
                amount=credits,
                kind=TransactionKind.PURCHASE,
                description=description or f"Credit purchase ({credits} credits)",
                external_ref=payment_ref,
            ),
        )

        if not created:
            logger.info(
                "Credit purchase already fulfilled",
                extra={
                    "customer_id": str(customer.pk),
                    "payment_ref": payment_ref,
                    "event_id": event_id,
                },
            )
            return CreditLedger.balance(customer)

        logger.info(
            "Credit purchase fulfilled",
            extra={
                "customer_id": str(customer.pk),
                "credits": credits,
                "balance": entry.balance_after,
                "payment_ref": payment_ref,
                "event_id": event_id,
            },
        )
        send_on_commit(
            credits_purchased,
            sender=cls,
            customer=customer,
            credits=credits,
            balance=entry.balance_after,
            payment_ref=payment_ref,
            event_id=event_id,
        )
        return entry.balance_after
