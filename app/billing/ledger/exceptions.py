"""
Ledger-specific exceptions for credit operations.

This module provides a hierarchy of exceptions for ledger operations,
inheriting from the core exception base class for API consistency.

Exception Hierarchy:
    LedgerError (base)
    ├── InsufficientBalanceError - Debit larger than the current balance
    └── DuplicateExternalReference - External reference owned by another customer

Usage:
    from billing.ledger.exceptions import InsufficientBalanceError

    if balance < amount:
        raise InsufficientBalanceError(customer.id, required=amount, available=balance)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    import uuid
    from typing import Any


class LedgerError(BaseApplicationError):
    """
    Base exception for all ledger operations.

    Example:
        try:
            ledger.debit(customer, 30, "Image generation")
        except LedgerError as e:
            logger.error(f"Ledger operation failed: {e}")
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "LEDGER_ERROR"


class InsufficientBalanceError(LedgerError):
    """
    Raised when a customer has too few credits for a debit.

    Stores the customer ID, required amount, and available balance
    for detailed error reporting. The REST layer renders this as 402.

    Attributes:
        customer_id: The UUID of the customer with insufficient credits
        required: The number of credits that was required
        available: The number of credits that was available

    Example:
        if current_balance < amount:
            raise InsufficientBalanceError(
                customer.id,
                required=amount,
                available=current_balance,
            )
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        customer_id: uuid.UUID,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize with customer details and amounts.

        Args:
            customer_id: UUID of the customer with insufficient credits
            required: Credits required
            available: Credits available
            error_code: Optional custom error code
            details: Optional additional error context
        """
        self.customer_id = customer_id
        self.required = required
        self.available = available

        message = (
            f"Customer {customer_id} has insufficient credit balance: "
            f"required {required}, available {available}"
        )

        full_details = {
            "customer_id": str(customer_id),
            "required": required,
            "available": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=message,
            error_code=error_code,
            details=full_details,
        )


class DuplicateExternalReference(LedgerError, ConflictError):
    """
    Raised when an external reference is already recorded for another customer.

    The same reference on the same customer is an idempotent replay and
    does not raise; a different customer means the event was mis-routed.
    """

    default_error_code: str = "DUPLICATE_EXTERNAL_REFERENCE"
