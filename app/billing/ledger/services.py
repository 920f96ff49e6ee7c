"""
Ledger service layer for usage credits.

This module provides the CreditLedger class which encapsulates all
business logic for credit mutations. All ledger writes go through this
service to ensure validation, row locking and idempotency.

Usage:
    from billing.ledger.services import CreditLedger

    balance = CreditLedger.credit(
        customer,
        100,
        kind=TransactionKind.PURCHASE,
        description="Starter pack",
        external_ref="pi_123",
    )
    balance = CreditLedger.debit(customer, 30, "Image generation")
"""

from __future__ import annotations

from django.db import IntegrityError, transaction

from core.services import BaseService

from billing.ledger.exceptions import DuplicateExternalReference, InsufficientBalanceError
from billing.ledger.models import CreditTransaction, TransactionKind
from billing.ledger.types import CreditParams, DebitParams
from billing.models.customer import BillingCustomer


class CreditLedger(BaseService):
    """
    Service class for credit ledger operations.

    Key features:
    - Every mutation runs in one atomic block (BaseService.atomic)
    - The customer row is locked (select_for_update) before the latest
      balance is read, so concurrent mutations for one customer serialize
    - external_ref makes credits idempotent: a replay returns the current
      balance without appending
    - Balance never goes negative (checked here, enforced by a DB constraint)

    All methods are classmethods - no instance state is maintained.
    """

    @classmethod
    def record(
        cls,
        customer: BillingCustomer,
        params: CreditParams | DebitParams,
    ) -> tuple[CreditTransaction, bool]:
        """
        Append one transaction for a customer.

        Idempotent when params.external_ref is set: if a transaction with
        that reference already exists for this customer, it is returned
        and nothing is written.

        Args:
            customer: The billing customer to mutate
            params: CreditParams (adds) or DebitParams (removes)

        Returns:
            Tuple of (transaction, created)

        Raises:
            InsufficientBalanceError: If a debit exceeds the balance
            DuplicateExternalReference: If external_ref belongs to
                another customer
        """
        logger = cls.get_logger()
        signed_amount = (
            params.amount if isinstance(params, CreditParams) else -params.amount
        )

        with cls.atomic():
            # Lock the customer row first; every mutation for this customer
            # queues here, so the balance read below cannot go stale.
            locked = BillingCustomer.objects.select_for_update().get(pk=customer.pk)

            # Step 1: Check idempotency FIRST, before validating the balance
            if params.external_ref:
                existing = cls._find_by_external_ref(locked, params.external_ref)
                if existing is not None:
                    logger.info(
                        "Ledger replay ignored",
                        extra={
                            "customer_id": str(locked.pk),
                            "external_ref": params.external_ref,
                            "transaction_id": str(existing.pk),
                        },
                    )
                    return existing, False

            # Step 2: Validate against the current balance
            latest = CreditTransaction.objects.latest_for(locked)
            current_balance = latest.balance_after if latest else 0
            next_sequence = latest.sequence + 1 if latest else 1

            if signed_amount < 0 and current_balance < -signed_amount:
                logger.info(
                    "Debit rejected for insufficient balance",
                    extra={
                        "customer_id": str(locked.pk),
                        "required": -signed_amount,
                        "available": current_balance,
                    },
                )
                raise InsufficientBalanceError(
                    locked.pk,
                    required=-signed_amount,
                    available=current_balance,
                )

            # Step 3: Append. A concurrent writer on another customer may
            # have taken the same external_ref between our check and insert.
            try:
                with transaction.atomic():
                    entry = CreditTransaction.objects.create(
                        customer=locked,
                        amount=signed_amount,
                        balance_after=current_balance + signed_amount,
                        kind=params.kind,
                        description=params.description,
                        external_ref=params.external_ref,
                        sequence=next_sequence,
                    )
            except IntegrityError:
                if not params.external_ref:
                    raise
                existing = cls._find_by_external_ref(locked, params.external_ref)
                if existing is None:
                    raise
                return existing, False

        logger.info(
            "Ledger transaction recorded",
            extra={
                "customer_id": str(locked.pk),
                "transaction_id": str(entry.pk),
                "kind": entry.kind,
                "amount": entry.amount,
                "balance_after": entry.balance_after,
            },
        )
        return entry, True

    @staticmethod
    def _find_by_external_ref(
        customer: BillingCustomer, external_ref: str
    ) -> CreditTransaction | None:
        """
        Look up an existing transaction by reference.

        Raises:
            DuplicateExternalReference: If the reference belongs to another customer
        """
        existing = CreditTransaction.objects.filter(external_ref=external_ref).first()
        if existing is None:
            return None
        if existing.customer_id != customer.pk:
            raise DuplicateExternalReference(
                f"External reference {external_ref} is already recorded "
                f"for another customer",
                details={
                    "external_ref": external_ref,
                    "customer_id": str(customer.pk),
                },
            )
        return existing

    @classmethod
    def credit(
        cls,
        customer: BillingCustomer,
        amount: int,
        kind: str = TransactionKind.PURCHASE,
        description: str = "",
        external_ref: str | None = None,
    ) -> int:
        """
        Add credits to a customer.

        Args:
            customer: The billing customer
            amount: Credits to add (must be positive)
            kind: Transaction kind (default: purchase)
            description: Human-readable reason
            external_ref: Provider reference for idempotency

        Returns:
            The balance after the call. For a replayed external_ref this
            is the current balance and nothing is appended.

        Raises:
            ValueError: If amount is not a positive integer
            DuplicateExternalReference: If external_ref belongs to another customer

        Example:
            CreditLedger.credit(customer, 100)           # -> 100
            CreditLedger.credit(customer, 50, external_ref="pi_1")  # -> 150
            CreditLedger.credit(customer, 50, external_ref="pi_1")  # -> 150
        """
        params = CreditParams(
            amount=amount,
            kind=kind,
            description=description,
            external_ref=external_ref,
        )
        entry, created = cls.record(customer, params)
        if created:
            return entry.balance_after
        return cls.balance(customer)

    @classmethod
    def debit(
        cls,
        customer: BillingCustomer,
        amount: int,
        description: str = "",
        kind: str = TransactionKind.USAGE,
    ) -> int:
        """
        Consume credits from a customer.

        Args:
            customer: The billing customer
            amount: Credits to consume (must be positive)
            description: Human-readable reason
            kind: Transaction kind (default: usage)

        Returns:
            The balance after the debit

        Raises:
            ValueError: If amount is not a positive integer
            InsufficientBalanceError: If the balance is below amount;
                nothing is written
        """
        entry, _ = cls.record(
            customer,
            DebitParams(amount=amount, description=description, kind=kind),
        )
        return entry.balance_after

    @staticmethod
    def balance(customer: BillingCustomer) -> int:
        """
        Current credit balance: balance_after of the latest transaction.

        Returns:
            Balance in credits (0 when the customer has no transactions)
        """
        latest = CreditTransaction.objects.latest_for(customer)
        return latest.balance_after if latest else 0

    @staticmethod
    def history(
        customer: BillingCustomer,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CreditTransaction]:
        """
        Transactions for a customer, newest first.

        Args:
            customer: The billing customer
            limit: Maximum number of transactions to return (default: 50)
            offset: Number of transactions to skip (default: 0)
        """
        return list(
            CreditTransaction.objects.for_customer(customer).order_by("-sequence")[
                offset : offset + limit
            ]
        )
