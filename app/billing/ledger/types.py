"""
Data types for ledger operations.

Types:
    CreditParams: Validated parameters for a credit (balance increase)
    DebitParams: Validated parameters for a debit (balance decrease)

Usage:
    from billing.ledger.types import CreditParams

    params = CreditParams(
        amount=100,
        kind=TransactionKind.PURCHASE,
        description="Starter pack",
        external_ref="pi_123",
    )
"""

from __future__ import annotations

from dataclasses import dataclass

from billing.ledger.models import TransactionKind


@dataclass(frozen=True)
class CreditParams:
    """
    Parameters for adding credits.

    Attributes:
        amount: Credits to add (must be positive)
        kind: Transaction kind (purchase, bonus, refund, allocation)
        description: Human-readable reason
        external_ref: Provider reference for idempotency (optional)
    """

    amount: int
    kind: str = TransactionKind.PURCHASE
    description: str = ""
    external_ref: str | None = None

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("amount must be an integer")
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if self.kind not in TransactionKind.values:
            raise ValueError(f"unknown transaction kind: {self.kind!r}")
        if self.external_ref == "":
            raise ValueError("external_ref must be None or non-empty")


@dataclass(frozen=True)
class DebitParams:
    """
    Parameters for consuming credits.

    Attributes:
        amount: Credits to remove (must be positive; stored negated)
        description: Human-readable reason
        kind: Transaction kind (usage by default, or expire)
        external_ref: Provider reference for idempotency (optional)
    """

    amount: int
    description: str = ""
    kind: str = TransactionKind.USAGE
    external_ref: str | None = None

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("amount must be an integer")
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if self.kind not in TransactionKind.values:
            raise ValueError(f"unknown transaction kind: {self.kind!r}")
