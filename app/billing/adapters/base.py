"""
Provider-neutral types and the payment provider protocol.

Everything the billing core needs from the payments provider goes
through PaymentProviderClient. Handlers and services depend on this
protocol; StripeAdapter is the production implementation and tests
substitute a mock.

Result types normalize provider objects. The same from_dict() parsers are
used for objects embedded in webhook payloads and for objects re-fetched
from the provider, so both paths project identically.

Usage:
    from billing.adapters.base import PaymentProviderClient, SubscriptionResult

    def refresh(provider: PaymentProviderClient, subscription_id: str):
        subscription = provider.retrieve_subscription(subscription_id)
        return subscription.status
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Parsing Helpers
# =============================================================================


def _ref_id(value: Any) -> str | None:
    """Return an object id whether the field is expanded (dict) or a bare id."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _timestamp(value: Any) -> datetime | None:
    """Convert a Unix timestamp to an aware datetime (UTC)."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _first_item(data: dict[str, Any]) -> dict[str, Any]:
    items = (data.get("items") or {}).get("data") or []
    return items[0] if items and isinstance(items[0], dict) else {}


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CustomerResult:
    """
    Result from customer operations.

    Attributes:
        id: Customer ID (cus_xxx)
        email: Customer email
        metadata: Attached metadata
        raw_response: Full provider response dict (for debugging)
    """

    id: str
    email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateCheckoutSessionParams:
    """
    Parameters for creating a hosted checkout session.

    Attributes:
        mode: "subscription" or "payment"
        price_id: Provider price to charge
        success_url: Redirect after a completed checkout
        cancel_url: Redirect when the customer abandons checkout
        client_reference_id: Local BillingCustomer id, echoed back on
            checkout.session.completed
        customer_id: Existing provider customer (optional)
        quantity: Line item quantity (default: 1)
        metadata: Key-value pairs echoed back on the session
        idempotency_key: Unique key for idempotent creation
    """

    mode: str
    price_id: str
    success_url: str
    cancel_url: str
    client_reference_id: str
    idempotency_key: str
    customer_id: str | None = None
    quantity: int = 1
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.mode not in ("subscription", "payment"):
            raise ValueError("mode must be 'subscription' or 'payment'")
        if not self.price_id:
            raise ValueError("price_id is required")
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class CheckoutSessionResult:
    """
    A checkout session, as created or as delivered in an event.

    Attributes:
        id: Checkout Session ID (cs_xxx)
        mode: "subscription", "payment" or "setup"
        url: Hosted page URL (only present on creation)
        customer_id: Provider customer (cus_xxx), if known
        subscription_id: Created subscription (sub_xxx), subscription mode only
        payment_intent_id: Payment intent (pi_xxx), payment mode only
        client_reference_id: Local reference passed at creation
        payment_status: "paid", "unpaid" or "no_payment_required"
        metadata: Attached metadata
        raw_response: Full provider response dict
    """

    id: str
    mode: str | None = None
    url: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    client_reference_id: str | None = None
    payment_status: str | None = None
    customer_email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckoutSessionResult:
        details = data.get("customer_details") or {}
        return cls(
            id=data.get("id", ""),
            mode=data.get("mode"),
            url=data.get("url"),
            customer_id=_ref_id(data.get("customer")),
            subscription_id=_ref_id(data.get("subscription")),
            payment_intent_id=_ref_id(data.get("payment_intent")),
            client_reference_id=data.get("client_reference_id"),
            payment_status=data.get("payment_status"),
            customer_email=data.get("customer_email") or details.get("email"),
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )


@dataclass
class PortalSessionResult:
    """
    Result from customer-portal session creation.

    Attributes:
        id: Portal session ID (bps_xxx)
        url: Hosted portal URL
    """

    id: str
    url: str


@dataclass
class SubscriptionResult:
    """
    A subscription, as embedded in an event or re-fetched.

    Attributes:
        id: Subscription ID (sub_xxx)
        status: Provider subscription status
        customer_id: Provider customer (cus_xxx)
        price_id: Price of the first subscription item
        cancel_at_period_end: Whether it ends at period end
        current_period_end: End of the current period (display only)
        metadata: Attached metadata
        raw_response: Full provider response dict
    """

    id: str
    status: str | None = None
    customer_id: str | None = None
    price_id: str | None = None
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubscriptionResult:
        """
        Parse a subscription object.

        current_period_end moved from the subscription to its items in
        newer API versions; both locations are accepted.
        """
        item = _first_item(data)
        price = item.get("price") or item.get("plan")
        return cls(
            id=data.get("id", ""),
            status=data.get("status"),
            customer_id=_ref_id(data.get("customer")),
            price_id=_ref_id(price),
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            current_period_end=_timestamp(
                data.get("current_period_end") or item.get("current_period_end")
            ),
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )


@dataclass
class InvoiceResult:
    """
    An invoice, as embedded in an event or re-fetched.

    Attributes:
        id: Invoice ID (in_xxx)
        status: Invoice status ("paid", "open", ...)
        customer_id: Provider customer (cus_xxx)
        subscription_id: Subscription billed by this invoice, if any
        billing_reason: "subscription_create", "subscription_cycle", ...
        attempt_count: Payment attempts so far
        next_payment_attempt: When the provider will retry, if scheduled
        amount_paid: Amount paid in the smallest currency unit
        raw_response: Full provider response dict
    """

    id: str
    status: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    billing_reason: str | None = None
    attempt_count: int = 0
    next_payment_attempt: datetime | None = None
    amount_paid: int = 0
    currency: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    SUBSCRIPTION_REASONS = ("subscription_create", "subscription_cycle")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InvoiceResult:
        """
        Parse an invoice object.

        The subscription reference moved under parent.subscription_details
        in newer API versions; both locations are accepted.
        """
        parent = data.get("parent") or {}
        subscription = data.get("subscription") or (
            parent.get("subscription_details") or {}
        ).get("subscription")
        return cls(
            id=data.get("id", ""),
            status=data.get("status"),
            customer_id=_ref_id(data.get("customer")),
            subscription_id=_ref_id(subscription),
            billing_reason=data.get("billing_reason"),
            attempt_count=int(data.get("attempt_count") or 0),
            next_payment_attempt=_timestamp(data.get("next_payment_attempt")),
            amount_paid=int(data.get("amount_paid") or 0),
            currency=data.get("currency"),
            raw_response=data,
        )

    @property
    def is_subscription_charge(self) -> bool:
        """Whether this invoice starts or renews a subscription period."""
        return bool(self.subscription_id) and (
            self.billing_reason in self.SUBSCRIPTION_REASONS
        )


@dataclass
class UsageReportResult:
    """
    Result from reporting a usage meter event.

    Attributes:
        identifier: Idempotency identifier sent with the event
        event_name: Meter event name
    """

    identifier: str
    event_name: str


# =============================================================================
# Provider Protocol
# =============================================================================


@runtime_checkable
class PaymentProviderClient(Protocol):
    """
    Capability interface to the payments provider.

    Implementations translate provider errors into billing.exceptions
    ProviderError subclasses and never leak SDK exceptions.
    """

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook signature and return the decoded event.

        Raises:
            AuthenticationError: Signature invalid or outside tolerance
            MalformedPayloadError: Body is not a JSON object
        """
        ...

    def create_customer(
        self,
        email: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CustomerResult: ...

    def create_checkout_session(
        self, params: CreateCheckoutSessionParams
    ) -> CheckoutSessionResult: ...

    def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> PortalSessionResult: ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionResult: ...

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionResult: ...

    def retrieve_invoice(self, invoice_id: str) -> InvoiceResult: ...

    def report_usage(
        self,
        event_name: str,
        customer_id: str,
        quantity: int,
        identifier: str,
    ) -> UsageReportResult: ...
