"""
Metered usage recording.

UsageService debits usage credits from the ledger and, when a meter event
is configured, mirrors the usage to the provider as a billing meter event.

The debit is authoritative. Meter reporting is queued to Celery after
commit (billing.tasks.report_usage_event) so provider latency and retries
never hold up the request; reporting failures never undo a debit.

Usage:
    from billing.services import UsageService

    service = UsageService(config, provider)
    balance = service.record_usage(customer, 3, "Image generation")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService

from billing.exceptions import ProviderError
from billing.ledger.models import CreditTransaction
from billing.ledger.services import CreditLedger
from billing.ledger.types import DebitParams

if TYPE_CHECKING:
    from billing.adapters.base import PaymentProviderClient, UsageReportResult
    from billing.config import BillingConfig
    from billing.models import BillingCustomer


class UsageService(BaseService):
    """Service for recording metered usage against the credit ledger."""

    def __init__(self, config: BillingConfig, provider: PaymentProviderClient):
        self.config = config
        self.provider = provider

    @classmethod
    def from_settings(cls) -> UsageService:
        """Build a service wired to the configured Stripe adapter."""
        from billing.adapters import StripeAdapter
        from billing.config import get_billing_config

        config = get_billing_config()
        return cls(config, StripeAdapter(config))

    def record_usage(
        self,
        customer: BillingCustomer,
        quantity: int,
        description: str = "",
    ) -> int:
        """
        Debit usage credits and queue the usage report for the provider.

        Args:
            customer: The consuming customer
            quantity: Credits consumed (positive)
            description: Ledger description

        Returns:
            The balance after the debit

        Raises:
            ValueError: If quantity is not a positive integer
            InsufficientBalanceError: If the balance is below quantity
        """
        with self.atomic():
            entry, _ = CreditLedger.record(
                customer,
                DebitParams(amount=quantity, description=description),
            )
            if self.config.usage_meter_event and customer.stripe_customer_id:
                transaction.on_commit(lambda: self._queue_report(entry))

        return entry.balance_after

    def _queue_report(self, entry: CreditTransaction) -> None:
        from billing.tasks import report_usage_event

        report_usage_event.delay(str(entry.pk))

    def report(self, transaction_id: str) -> UsageReportResult | None:
        """
        Report one usage debit to the provider as a meter event.

        The ledger transaction id is the meter event identifier, so a
        repeated report is deduplicated by the provider.

        Returns:
            The provider result, or None when nothing was reported

        Raises:
            ProviderError: Retryable provider failures (the caller retries);
                permanent failures are logged and swallowed
        """
        logger = self.get_logger()

        entry = (
            CreditTransaction.objects.select_related("customer")
            .filter(pk=transaction_id)
            .first()
        )
        if entry is None or entry.amount >= 0:
            logger.warning(
                "No usage debit to report",
                extra={"transaction_id": str(transaction_id)},
            )
            return None

        customer = entry.customer
        if not self.config.usage_meter_event or not customer.stripe_customer_id:
            return None

        quantity = -entry.amount
        try:
            return self.provider.report_usage(
                event_name=self.config.usage_meter_event,
                customer_id=customer.stripe_customer_id,
                quantity=quantity,
                identifier=str(entry.pk),
            )
        except ProviderError as e:
            logger.error(
                "Failed to report usage to provider",
                extra={
                    "customer_id": str(customer.pk),
                    "transaction_id": str(entry.pk),
                    "quantity": quantity,
                    "error_code": e.error_code,
                    "retryable": e.is_retryable,
                },
            )
            if e.is_retryable:
                raise
            return None
