"""
Stripe API adapter for billing operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, retries, idempotency and
observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Bounded retries with exponential backoff for transient errors
- Structured logging with timing metrics
- Idempotency keys on every create

Configuration (via BillingConfig):
- stripe_secret_key: Stripe API secret key
- webhook_secret: Webhook signing secret
- webhook_tolerance_seconds: Max age of a webhook signature (default: 300)
- api_timeout_seconds: API call timeout (default: 10)
- max_retries: Max retry attempts for transient errors (default: 3)

Usage:
    from billing.adapters import StripeAdapter
    from billing.config import get_billing_config

    adapter = StripeAdapter(get_billing_config())
    subscription = adapter.retrieve_subscription("sub_123")
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import stripe

from billing.adapters.base import (
    CheckoutSessionResult,
    CreateCheckoutSessionParams,
    CustomerResult,
    InvoiceResult,
    PortalSessionResult,
    SubscriptionResult,
    UsageReportResult,
)
from billing.exceptions import (
    AuthenticationError,
    MalformedPayloadError,
    PaymentDeclinedError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderUnavailableError,
    is_retryable_provider_error,
)

if TYPE_CHECKING:
    from billing.config import BillingConfig

T = TypeVar("T")


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{hash}"

    The same (operation, entity_id, discriminator) always yields the same
    key, so a retried create returns the original object instead of a
    duplicate.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_customer",
            entity_id=customer.id,
        )
        # Result: "create_customer:550e8400-e29b-41d4-a716-446655440000:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        discriminator: str = "",
    ) -> str:
        """
        Generate a deterministic idempotency key.

        Args:
            operation: The Stripe operation (create_customer, checkout, ...)
            entity_id: The domain entity ID
            discriminator: Extra input that distinguishes separate requests
                for the same entity (e.g. the price id of a checkout)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{discriminator}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def call_with_retries(
    fn: Callable[[], T],
    max_retries: int,
    retryable_only: bool = True,
    sleep: Callable[[float], None] = time.sleep,
    base_delay: float = 1.0,
) -> T:
    """
    Call fn, retrying transient provider errors with backoff.

    Only use for read-only calls and creates carrying an idempotency key;
    anything else may apply twice.

    Args:
        fn: Zero-argument callable performing the provider call
        max_retries: Retries after the first attempt (0 disables retrying)
        retryable_only: Retry only errors flagged is_retryable. When False,
            every ProviderError is retried.
        sleep: Sleep function (injectable for tests)
        base_delay: Backoff base in seconds

    Returns:
        Whatever fn returns

    Raises:
        The last error once retries are exhausted or a non-retryable
        error occurs
    """
    attempt = 0
    while True:
        try:
            return fn()
        except ProviderError as e:
            retryable = is_retryable_provider_error(e) or not retryable_only
            if not retryable or attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, base=base_delay)
            logging.getLogger(__name__).warning(
                "Retrying provider call after transient error",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 3),
                    "error_code": e.error_code,
                },
            )
            sleep(delay)
            attempt += 1


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    Implements billing.adapters.base.PaymentProviderClient. Holds only the
    immutable BillingConfig, so one instance can be shared across threads
    and Celery workers.

    Usage:
        adapter = StripeAdapter(config)
        subscription = adapter.retrieve_subscription("sub_123")
    """

    def __init__(self, config: BillingConfig, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self._sleep = sleep
        self._configure_stripe()

    # =========================================================================
    # Configuration
    # =========================================================================

    def _configure_stripe(self) -> None:
        """Configure the Stripe HTTP client timeout; retries are ours."""
        stripe.default_http_client = stripe.RequestsClient(
            timeout=self.config.api_timeout_seconds
        )
        stripe.max_network_retries = 0

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _request_options(self, idempotency_key: str | None = None) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self.config.stripe_secret_key}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        return options

    def _call(
        self,
        operation: str,
        fn: Callable[[], T],
        log_context: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> T:
        """
        Run one Stripe call with timing logs, translation and retries.

        Args:
            operation: Operation name for logs
            fn: Zero-argument callable performing the SDK call
            log_context: Extra structured logging context
            retry: Whether transient errors are retried

        Raises:
            ProviderError: Translated Stripe error
        """
        logger = self.get_logger()
        log_context = {"operation": operation, **(log_context or {})}

        def attempt() -> T:
            start_time = time.time()
            try:
                result = fn()
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                self._handle_stripe_error(e, log_context, duration_ms)
                raise
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={**log_context, "duration_ms": duration_ms},
            )
            return result

        logger.info("Starting Stripe operation", extra=log_context)
        return call_with_retries(
            attempt,
            max_retries=self.config.max_retries if retry else 0,
            sleep=self._sleep,
        )

    # =========================================================================
    # Customers
    # =========================================================================

    def create_customer(
        self,
        email: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CustomerResult:
        """
        Create a Stripe Customer.

        Args:
            email: Customer email (optional)
            metadata: Key-value pairs (include the local customer id)
            idempotency_key: Unique key for idempotent creation

        Returns:
            CustomerResult with the new customer id

        Raises:
            ProviderError: On any Stripe failure
        """
        params: dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email

        customer = self._call(
            "create_customer",
            lambda: stripe.Customer.create(
                **params, **self._request_options(idempotency_key)
            ),
            log_context={"idempotency_key": idempotency_key},
        )
        data = customer.to_dict()
        return CustomerResult(
            id=data["id"],
            email=data.get("email"),
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )

    # =========================================================================
    # Hosted Pages
    # =========================================================================

    def create_checkout_session(
        self, params: CreateCheckoutSessionParams
    ) -> CheckoutSessionResult:
        """
        Create a hosted Checkout Session.

        The session's client_reference_id carries the local customer id so
        checkout.session.completed can be matched back.

        Args:
            params: Validated checkout parameters

        Returns:
            CheckoutSessionResult including the hosted page url

        Raises:
            ProviderError: On any Stripe failure
        """
        request: dict[str, Any] = {
            "mode": params.mode,
            "line_items": [{"price": params.price_id, "quantity": params.quantity}],
            "success_url": params.success_url,
            "cancel_url": params.cancel_url,
            "client_reference_id": params.client_reference_id,
            "metadata": params.metadata,
        }
        if params.customer_id:
            request["customer"] = params.customer_id
        if params.mode == "subscription":
            request["subscription_data"] = {"metadata": params.metadata}
        else:
            request["payment_intent_data"] = {"metadata": params.metadata}

        session = self._call(
            "create_checkout_session",
            lambda: stripe.checkout.Session.create(
                **request, **self._request_options(params.idempotency_key)
            ),
            log_context={
                "mode": params.mode,
                "price_id": params.price_id,
                "client_reference_id": params.client_reference_id,
            },
        )
        return CheckoutSessionResult.from_dict(session.to_dict())

    def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> PortalSessionResult:
        """
        Create a Customer Portal session.

        Not retried: portal sessions are not idempotent and are cheap for
        the caller to request again.
        """
        session = self._call(
            "create_portal_session",
            lambda: stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                **self._request_options(),
            ),
            log_context={"customer_id": customer_id},
            retry=False,
        )
        return PortalSessionResult(id=session.id, url=session.url)

    # =========================================================================
    # Retrieval (re-fetch)
    # =========================================================================

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionResult:
        """
        Retrieve the current state of a Subscription.

        Raises:
            ProviderError: On any Stripe failure (transient ones after retries)
        """
        subscription = self._call(
            "retrieve_subscription",
            lambda: stripe.Subscription.retrieve(
                subscription_id, **self._request_options()
            ),
            log_context={"subscription_id": subscription_id},
        )
        return SubscriptionResult.from_dict(subscription.to_dict())

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionResult:
        """Retrieve the current state of a Checkout Session."""
        session = self._call(
            "retrieve_checkout_session",
            lambda: stripe.checkout.Session.retrieve(
                session_id, **self._request_options()
            ),
            log_context={"session_id": session_id},
        )
        return CheckoutSessionResult.from_dict(session.to_dict())

    def retrieve_invoice(self, invoice_id: str) -> InvoiceResult:
        """Retrieve the current state of an Invoice."""
        invoice = self._call(
            "retrieve_invoice",
            lambda: stripe.Invoice.retrieve(invoice_id, **self._request_options()),
            log_context={"invoice_id": invoice_id},
        )
        return InvoiceResult.from_dict(invoice.to_dict())

    # =========================================================================
    # Usage Reporting
    # =========================================================================

    def report_usage(
        self,
        event_name: str,
        customer_id: str,
        quantity: int,
        identifier: str,
    ) -> UsageReportResult:
        """
        Report metered usage as a billing meter event.

        The identifier deduplicates the event on Stripe's side, which makes
        retrying safe.

        Args:
            event_name: Meter event name configured on the meter
            customer_id: Stripe customer the usage belongs to
            quantity: Usage quantity (positive)
            identifier: Unique identifier (the ledger transaction id)
        """
        self._call(
            "report_usage",
            lambda: stripe.billing.MeterEvent.create(
                event_name=event_name,
                payload={"stripe_customer_id": customer_id, "value": str(quantity)},
                identifier=identifier,
                **self._request_options(),
            ),
            log_context={
                "event_name": event_name,
                "customer_id": customer_id,
                "quantity": quantity,
                "identifier": identifier,
            },
        )
        return UsageReportResult(identifier=identifier, event_name=event_name)

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Checks the Stripe-Signature header (HMAC-SHA256 over
        "{timestamp}.{payload}" with the endpoint secret) and the timestamp
        tolerance, then decodes the body.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value

        Returns:
            Decoded event dict

        Raises:
            AuthenticationError: Invalid signature or stale timestamp
            MalformedPayloadError: Body is not a JSON object
        """
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(
                "Webhook body is not UTF-8",
                details={"error": str(e)},
            ) from e

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.config.webhook_secret,
                self.config.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise AuthenticationError(
                "Invalid webhook signature",
                kind=AuthenticationError.INVALID_SIGNATURE,
                details={"error": str(e)},
            ) from e

        try:
            event = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MalformedPayloadError(
                "Webhook body is not valid JSON",
                details={"error": str(e)},
            ) from e

        if not isinstance(event, dict):
            raise MalformedPayloadError("Webhook body is not a JSON object")
        return event

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Non-Stripe exceptions are left alone; the caller re-raises them.

        Args:
            error: The Stripe exception
            log_context: Logging context dict
            duration_ms: Operation duration for logging

        Raises:
            PaymentDeclinedError: Card declined or insufficient funds
            ProviderInvalidRequestError: Invalid parameters or missing object
            ProviderRateLimitError: Rate limited
            ProviderUnavailableError: Connection failure or Stripe 5xx
            ProviderAuthenticationError: Invalid API key
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, ProviderError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise PaymentDeclinedError(
                str(getattr(error, "user_message", None) or error),
                provider_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, (stripe.InvalidRequestError, stripe.IdempotencyError)):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "provider_code": error.code},
            )
            raise ProviderInvalidRequestError(
                str(error),
                provider_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise ProviderRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                provider_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise ProviderUnavailableError(
                "Could not connect to Stripe. Please retry.",
                provider_code="api_connection_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise ProviderUnavailableError(
                "Stripe service error. Please retry.",
                provider_code="api_error",
            )

        elif isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise ProviderAuthenticationError(
                "Stripe authentication failed",
                provider_code="authentication_error",
            )

        elif isinstance(error, stripe.StripeError):
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise ProviderUnavailableError(
                f"Unexpected Stripe error: {error}",
                provider_code="unknown_error",
            )

        logger.error(
            f"Non-Stripe error during Stripe call: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
