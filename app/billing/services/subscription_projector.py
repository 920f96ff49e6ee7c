"""
Subscription state projector.

SubscriptionProjector applies provider events to the local BillingCustomer
projection. It is the only code that writes the subscription fields
(stripe_subscription_id, subscription_status, plan_tier,
cancel_at_period_end, current_period_end).

Every apply_* method is called inside the webhook processing transaction,
so its writes commit together with the event's processed mark, and the
signals it emits are deferred until that commit.

Refetch policy:
    For event types configured as "refetch", state-bearing fields (status,
    tier, cancel-at-period-end) come from the current provider object, not
    the possibly stale payload. Display fields (current_period_end,
    metadata) always come from the payload.

Usage:
    from billing.services import SubscriptionProjector

    projector = SubscriptionProjector(config, provider)
    result = projector.apply_subscription_deleted(
        SubscriptionResult.from_dict(envelope.data_object),
        event_id=envelope.id,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from billing.config import RefetchPolicy
from billing.exceptions import MalformedPayloadError
from billing.ledger.models import TransactionKind
from billing.ledger.services import CreditLedger
from billing.services.credit_provisioning import CreditProvisioningService
from billing.services.customer_service import BillingCustomerService
from billing.signals import (
    order_fulfillment_requested,
    send_on_commit,
    subscription_payment_failed,
    subscription_payment_succeeded,
    subscription_status_changed,
)
from billing.state_machines import SubscriptionStatus
from billing.webhooks.events import EventKind

if TYPE_CHECKING:
    from datetime import datetime

    from billing.adapters.base import (
        CheckoutSessionResult,
        InvoiceResult,
        PaymentProviderClient,
        SubscriptionResult,
    )
    from billing.config import BillingConfig
    from billing.models import BillingCustomer


CREDIT_PURCHASE_TYPE = "credit_purchase"


class SubscriptionProjector(BaseService):
    """
    Projects provider subscription, checkout and invoice events onto
    BillingCustomer.

    Missing customers are logged and treated as a successful no-op, so
    the event is still marked processed. Provider errors during a
    re-fetch propagate and leave the event unprocessed for retry.
    """

    def __init__(self, config: BillingConfig, provider: PaymentProviderClient):
        self.config = config
        self.provider = provider

    # =========================================================================
    # Checkout
    # =========================================================================

    def apply_checkout_completed(
        self,
        session: CheckoutSessionResult,
        event_id: str | None = None,
    ) -> ServiceResult:
        """
        Apply checkout.session.completed.

        Subscription mode links (or creates) the customer and activates the
        subscription. Payment mode either fulfills a credit pack or asks
        the application to fulfill the order via order_fulfillment_requested.

        Raises:
            MalformedPayloadError: Credit purchase metadata is unusable
        """
        logger = self.get_logger()

        if session.mode == "subscription":
            return self._apply_subscription_checkout(session, event_id)

        if session.mode != "payment":
            logger.info(
                f"Ignoring checkout session in {session.mode} mode",
                extra={"session_id": session.id, "event_id": event_id},
            )
            return ServiceResult.success(None)

        if session.metadata.get("type") == CREDIT_PURCHASE_TYPE:
            return self._apply_credit_purchase(session, event_id)

        customer = BillingCustomerService.find(
            client_reference_id=session.client_reference_id,
            stripe_customer_id=session.customer_id,
        )
        logger.info(
            "Requesting order fulfillment",
            extra={
                "session_id": session.id,
                "customer_id": str(customer.pk) if customer else None,
                "event_id": event_id,
            },
        )
        send_on_commit(
            order_fulfillment_requested,
            sender=self.__class__,
            customer=customer,
            session_id=session.id,
            metadata=dict(session.metadata),
            event_id=event_id,
        )
        return ServiceResult.success(customer)

    def _apply_subscription_checkout(
        self,
        session: CheckoutSessionResult,
        event_id: str | None,
    ) -> ServiceResult:
        logger = self.get_logger()

        customer, created = BillingCustomerService.resolve_or_create(
            client_reference_id=session.client_reference_id,
            stripe_customer_id=session.customer_id,
            email=session.customer_email,
        )

        if session.customer_id and customer.stripe_customer_id != session.customer_id:
            if customer.stripe_customer_id:
                logger.warning(
                    "Checkout customer differs from linked provider customer",
                    extra={
                        "customer_id": str(customer.pk),
                        "linked": customer.stripe_customer_id,
                        "checkout": session.customer_id,
                        "event_id": event_id,
                    },
                )
            customer.stripe_customer_id = session.customer_id
        if session.customer_email and not customer.email:
            customer.email = session.customer_email

        tier = None
        price_id = session.metadata.get("price_id")
        if price_id:
            tier = self._tier_for(price_id, event_id)

        self._apply_state(
            customer,
            status=SubscriptionStatus.ACTIVE,
            subscription_id=session.subscription_id,
            tier=tier,
            event_id=event_id,
        )
        logger.info(
            "Subscription checkout applied",
            extra={
                "customer_id": str(customer.pk),
                "customer_created": created,
                "subscription_id": session.subscription_id,
                "event_id": event_id,
            },
        )
        return ServiceResult.success(customer)

    def _apply_credit_purchase(
        self,
        session: CheckoutSessionResult,
        event_id: str | None,
    ) -> ServiceResult:
        pack = self.config.credit_pack(session.metadata.get("pack", ""))
        try:
            credits = int(session.metadata.get("credits") or (pack and pack.credits))
        except (TypeError, ValueError) as e:
            raise MalformedPayloadError(
                "Credit purchase checkout has no valid credit amount",
                details={"session_id": session.id, "event_id": event_id},
            ) from e
        if credits <= 0:
            raise MalformedPayloadError(
                "Credit purchase checkout has a non-positive credit amount",
                details={"session_id": session.id, "event_id": event_id},
            )

        customer, _ = BillingCustomerService.resolve_or_create(
            client_reference_id=session.client_reference_id,
            stripe_customer_id=session.customer_id,
            email=session.customer_email,
        )
        if session.customer_id and not customer.stripe_customer_id:
            customer.stripe_customer_id = session.customer_id
            customer.save(update_fields=["stripe_customer_id", "updated_at"])

        balance = CreditProvisioningService.fulfill_credit_purchase(
            customer,
            credits,
            payment_ref=session.payment_intent_id or session.id,
            description=f"Credit purchase: {pack.key}" if pack else "",
            event_id=event_id,
        )
        return ServiceResult.success({"customer": customer, "balance": balance})

    # =========================================================================
    # Subscription Lifecycle
    # =========================================================================

    def apply_subscription_change(
        self,
        subscription: SubscriptionResult,
        kind: EventKind,
        event_id: str | None = None,
    ) -> ServiceResult:
        """
        Apply customer.subscription.created / customer.subscription.updated.

        Created events get-or-create the customer; updated events for an
        unknown customer are a logged no-op.

        Raises:
            ProviderError: Re-fetch failed (event stays unprocessed)
        """
        logger = self.get_logger()

        if kind == EventKind.SUBSCRIPTION_CREATED:
            customer, _ = BillingCustomerService.resolve_or_create(
                client_reference_id=subscription.metadata.get("billing_customer_id"),
                stripe_customer_id=subscription.customer_id,
            )
            if subscription.customer_id and not customer.stripe_customer_id:
                customer.stripe_customer_id = subscription.customer_id
        else:
            customer = self._find_customer(subscription.customer_id, event_id)
            if customer is None:
                return ServiceResult.success(None)

        current = subscription
        if self.config.policy_for(kind.value) == RefetchPolicy.REFETCH:
            current = self.provider.retrieve_subscription(subscription.id)
            logger.debug(
                "Re-fetched subscription",
                extra={
                    "subscription_id": subscription.id,
                    "payload_status": subscription.status,
                    "current_status": current.status,
                    "event_id": event_id,
                },
            )

        self._apply_state(
            customer,
            status=SubscriptionStatus.from_provider(
                current.status, default=customer.subscription_status
            ),
            subscription_id=subscription.id,
            tier=self._tier_for(current.price_id, event_id),
            cancel_at_period_end=current.cancel_at_period_end,
            current_period_end=subscription.current_period_end,
            metadata=subscription.metadata,
            event_id=event_id,
        )
        return ServiceResult.success(customer)

    def apply_subscription_deleted(
        self,
        subscription: SubscriptionResult,
        event_id: str | None = None,
    ) -> ServiceResult:
        """
        Apply customer.subscription.deleted.

        Always results in status canceled, the baseline tier and
        cancel_at_period_end False, whatever the prior state.
        """
        customer = self._find_customer(subscription.customer_id, event_id)
        if customer is None:
            return ServiceResult.success(None)

        self._apply_state(
            customer,
            status=SubscriptionStatus.CANCELED,
            subscription_id=subscription.id,
            tier=self.config.baseline_tier,
            cancel_at_period_end=False,
            current_period_end=subscription.current_period_end,
            event_id=event_id,
        )
        return ServiceResult.success(customer)

    # =========================================================================
    # Invoices
    # =========================================================================

    def apply_invoice_paid(
        self,
        invoice: InvoiceResult,
        event_id: str | None = None,
    ) -> ServiceResult:
        """
        Apply invoice.paid.

        Refreshes the subscription state and, for subscription create/cycle
        invoices, grants the tier's credit allocation keyed by the invoice
        id, so a replay never grants twice.
        """
        logger = self.get_logger()

        customer = self._find_customer(invoice.customer_id, event_id)
        if customer is None:
            return ServiceResult.success(None)

        if invoice.subscription_id:
            self._refresh_from_invoice(
                customer,
                invoice,
                kind=EventKind.INVOICE_PAID,
                fallback_status=SubscriptionStatus.ACTIVE,
                event_id=event_id,
            )

        if invoice.is_subscription_charge:
            allocation = self.config.credit_allocation_for(customer.plan_tier)
            if allocation > 0:
                balance = CreditLedger.credit(
                    customer,
                    allocation,
                    kind=TransactionKind.SUBSCRIPTION_ALLOCATION,
                    description=f"{customer.plan_tier} plan allocation",
                    external_ref=invoice.id,
                )
                logger.info(
                    "Granted subscription credit allocation",
                    extra={
                        "customer_id": str(customer.pk),
                        "tier": customer.plan_tier,
                        "credits": allocation,
                        "balance": balance,
                        "invoice_id": invoice.id,
                        "event_id": event_id,
                    },
                )

        send_on_commit(
            subscription_payment_succeeded,
            sender=self.__class__,
            customer=customer,
            invoice_id=invoice.id,
            subscription_id=invoice.subscription_id,
            event_id=event_id,
        )
        return ServiceResult.success(customer)

    def apply_invoice_payment_failed(
        self,
        invoice: InvoiceResult,
        event_id: str | None = None,
    ) -> ServiceResult:
        """
        Apply invoice.payment_failed.

        Refreshes the subscription state (past_due when trusting the
        payload) and emits subscription_payment_failed for dunning.
        """
        logger = self.get_logger()

        customer = self._find_customer(invoice.customer_id, event_id)
        if customer is None:
            return ServiceResult.success(None)

        if invoice.subscription_id:
            self._refresh_from_invoice(
                customer,
                invoice,
                kind=EventKind.INVOICE_PAYMENT_FAILED,
                fallback_status=SubscriptionStatus.PAST_DUE,
                event_id=event_id,
            )

        logger.warning(
            "Subscription payment failed",
            extra={
                "customer_id": str(customer.pk),
                "invoice_id": invoice.id,
                "attempt_count": invoice.attempt_count,
                "event_id": event_id,
            },
        )
        send_on_commit(
            subscription_payment_failed,
            sender=self.__class__,
            customer=customer,
            invoice_id=invoice.id,
            subscription_id=invoice.subscription_id,
            attempt_count=invoice.attempt_count,
            next_payment_attempt=invoice.next_payment_attempt,
            event_id=event_id,
        )
        return ServiceResult.success(customer)

    def _refresh_from_invoice(
        self,
        customer: BillingCustomer,
        invoice: InvoiceResult,
        kind: EventKind,
        fallback_status: str,
        event_id: str | None,
    ) -> None:
        if self.config.policy_for(kind.value) == RefetchPolicy.REFETCH:
            current = self.provider.retrieve_subscription(invoice.subscription_id)
            self._apply_state(
                customer,
                status=SubscriptionStatus.from_provider(
                    current.status, default=fallback_status
                ),
                subscription_id=invoice.subscription_id,
                tier=self._tier_for(current.price_id, event_id),
                cancel_at_period_end=current.cancel_at_period_end,
                event_id=event_id,
            )
        else:
            self._apply_state(
                customer,
                status=fallback_status,
                subscription_id=invoice.subscription_id,
                event_id=event_id,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _find_customer(
        self, stripe_customer_id: str | None, event_id: str | None
    ) -> BillingCustomer | None:
        customer = BillingCustomerService.find(
            stripe_customer_id=stripe_customer_id,
            for_update=True,
        )
        if customer is None:
            self.get_logger().warning(
                "No billing customer for event, skipping",
                extra={"stripe_customer_id": stripe_customer_id, "event_id": event_id},
            )
        return customer

    def _tier_for(self, price_id: str | None, event_id: str | None) -> str:
        """Plan tier for a price; unknown prices fall back to the baseline."""
        tier = self.config.tier_for_price(price_id)
        if tier is None:
            self.get_logger().warning(
                "Unknown price, using baseline tier",
                extra={
                    "price_id": price_id,
                    "baseline_tier": self.config.baseline_tier,
                    "event_id": event_id,
                },
            )
            return self.config.baseline_tier
        return tier

    def _apply_state(
        self,
        customer: BillingCustomer,
        status: str,
        subscription_id: str | None = None,
        tier: str | None = None,
        cancel_at_period_end: bool | None = None,
        current_period_end: datetime | None = None,
        metadata: dict | None = None,
        event_id: str | None = None,
    ) -> None:
        """
        Write projected fields and emit subscription_status_changed.

        None arguments leave the field untouched. The whole row is saved
        because callers may have set provider references beforehand.
        """
        previous_status = customer.subscription_status

        customer.subscription_status = status
        if subscription_id:
            customer.stripe_subscription_id = subscription_id
        if tier is not None:
            customer.plan_tier = tier
        if cancel_at_period_end is not None:
            customer.cancel_at_period_end = cancel_at_period_end
        if current_period_end is not None:
            customer.current_period_end = current_period_end
        for key, value in (metadata or {}).items():
            customer.set_meta(key, value, save=False)
        customer.save()

        self.get_logger().info(
            "Subscription state projected",
            extra={
                "customer_id": str(customer.pk),
                "status": customer.subscription_status,
                "plan_tier": customer.plan_tier,
                "event_id": event_id,
            },
        )

        if previous_status != status:
            send_on_commit(
                subscription_status_changed,
                sender=self.__class__,
                customer=customer,
                previous_status=previous_status,
                status=status,
                event_id=event_id,
            )
