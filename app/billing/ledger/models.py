"""
Ledger model for usage credits.

CreditTransaction is an append-only log of signed credit movements for a
billing customer. Each row carries the running balance after it was
applied, so the current balance is simply the balance_after of the latest
row. There is no separately stored balance that could drift.

Usage:
    from billing.ledger.models import CreditTransaction, TransactionKind

    latest = CreditTransaction.objects.latest_for(customer)
    balance = latest.balance_after if latest else 0
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin


class TransactionKind(models.TextChoices):
    """
    Types of credit transactions.

    Values:
        PURCHASE: Credits bought with a one-time payment
        USAGE: Credits consumed by metered usage (negative amount)
        REFUND: Credits returned after a refund or reversal
        BONUS: Promotional or goodwill credits
        EXPIRE: Credits removed on expiry (negative amount)
        SUBSCRIPTION_ALLOCATION: Credits granted by a paid subscription invoice
    """

    PURCHASE = "purchase", "Purchase"
    USAGE = "usage", "Usage"
    REFUND = "refund", "Refund"
    BONUS = "bonus", "Bonus"
    EXPIRE = "expire", "Expire"
    SUBSCRIPTION_ALLOCATION = "subscription_allocation", "Subscription Allocation"


class CreditTransactionQuerySet(models.QuerySet):
    def for_customer(self, customer) -> CreditTransactionQuerySet:
        return self.filter(customer=customer)

    def latest_for(self, customer) -> CreditTransaction | None:
        """Most recent transaction for a customer."""
        return self.for_customer(customer).order_by("-sequence").first()

    def sum_for(self, customer) -> int:
        """Sum of all committed amounts for a customer."""
        return self.for_customer(customer).aggregate(
            total=Coalesce(Sum("amount"), 0)
        )["total"]


class CreditTransaction(UUIDPrimaryKeyMixin, models.Model):
    """
    An immutable credit movement for one customer.

    Fields:
        id: UUID primary key (from UUIDPrimaryKeyMixin)
        customer: The billing customer whose balance changes
        amount: Signed credit delta (positive adds, negative consumes)
        balance_after: Customer balance after applying this row
        kind: Category of the movement
        description: Human-readable reason
        external_ref: Provider reference that produced this row
            (invoice id, payment intent id); unique when set
        sequence: Per-customer monotonic counter (orders rows with
            identical timestamps)
        created_at: When the row was written

    Constraints:
        - amount != 0
        - balance_after >= 0
        - external_ref unique when not null
        - (customer, sequence) unique

    Note:
        Rows are never updated or deleted. Corrections are new rows.
    """

    customer = models.ForeignKey(
        "billing.BillingCustomer",
        on_delete=models.PROTECT,
        related_name="credit_transactions",
        help_text="Billing customer whose balance this row changes",
    )
    amount = models.IntegerField(
        help_text="Signed credit delta",
    )
    balance_after = models.IntegerField(
        help_text="Customer credit balance after this transaction",
    )
    kind = models.CharField(
        max_length=30,
        choices=TransactionKind.choices,
        db_index=True,
        help_text="Category of this transaction",
    )
    description = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Human-readable reason for this transaction",
    )
    external_ref = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider reference that produced this transaction",
    )
    sequence = models.PositiveIntegerField(
        help_text="Per-customer monotonic sequence number",
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this transaction was recorded",
    )

    objects = CreditTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-sequence"]
        verbose_name = "Credit Transaction"
        verbose_name_plural = "Credit Transactions"
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount=0),
                name="credit_transaction_amount_non_zero",
            ),
            models.CheckConstraint(
                condition=Q(balance_after__gte=0),
                name="credit_transaction_balance_non_negative",
            ),
            models.UniqueConstraint(
                fields=["external_ref"],
                condition=Q(external_ref__isnull=False),
                name="credit_transaction_unique_external_ref",
            ),
            models.UniqueConstraint(
                fields=["customer", "sequence"],
                name="credit_transaction_unique_customer_sequence",
            ),
        ]
        indexes = [
            models.Index(
                fields=["customer", "-created_at"],
                name="billing_credit_cust_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with signed amount."""
        return f"{self.get_kind_display()} {self.amount:+d} -> {self.balance_after}"

    @property
    def is_credit(self) -> bool:
        return self.amount > 0
