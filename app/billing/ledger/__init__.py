"""
Ledger - Append-only usage credit balances.

Every credit movement for a billing customer is a CreditTransaction row
carrying the running balance after it. The balance is the balance_after
of the latest row and never goes negative.

Public API:
    Models:
        CreditTransaction - Immutable signed credit movement
        TransactionKind - Enum of movement categories

    Service:
        CreditLedger - credit, debit, balance, history

    Types:
        CreditParams - Parameters for adding credits
        DebitParams - Parameters for consuming credits

    Exceptions:
        LedgerError - Base exception for ledger operations
        InsufficientBalanceError - Debit larger than the balance
        DuplicateExternalReference - Reference owned by another customer

Usage:
    from billing.ledger import CreditLedger, InsufficientBalanceError

    CreditLedger.credit(customer, 100)
    try:
        CreditLedger.debit(customer, 130, "Batch export")
    except InsufficientBalanceError as e:
        print(f"Need {e.required}, have {e.available}")
"""

from .exceptions import (
    DuplicateExternalReference,
    InsufficientBalanceError,
    LedgerError,
)
from .models import CreditTransaction, TransactionKind
from .services import CreditLedger
from .types import CreditParams, DebitParams

__all__ = [
    # Models
    "CreditTransaction",
    "TransactionKind",
    # Service
    "CreditLedger",
    # Types
    "CreditParams",
    "DebitParams",
    # Exceptions
    "LedgerError",
    "InsufficientBalanceError",
    "DuplicateExternalReference",
]
