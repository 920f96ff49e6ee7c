"""
Billing-specific exceptions.

This module provides the exception hierarchy for webhook intake, event
projection and provider calls. All classes inherit from the core exception
base so views and tasks can render them uniformly via to_dict().

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── AuthenticationError - Webhook signature missing or invalid
    ├── MalformedPayloadError - Webhook body is not a usable event
    ├── CustomerNotFoundError - No local customer for a provider reference
    └── ProviderError - Base for all payment provider errors
        ├── ProviderTransientError - Safe to retry with backoff
        │   ├── ProviderRateLimitError - Rate limited
        │   └── ProviderUnavailableError - Network or provider outage
        └── ProviderPermanentError - Do not retry
            ├── ProviderInvalidRequestError - Bad parameters or unknown object
            ├── ProviderAuthenticationError - Bad API key
            └── PaymentDeclinedError - Card declined / insufficient funds

Ledger errors live in billing.ledger.exceptions.

Usage:
    from billing.exceptions import AuthenticationError, ProviderError

    try:
        envelope = intake.parse(payload, signature)
    except AuthenticationError as e:
        logger.warning("Rejected webhook", extra={"kind": e.kind})
        return HttpResponse(status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ExternalServiceError, NotFoundError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Billing Domain Exceptions
# =============================================================================


class BillingError(BaseApplicationError):
    """
    Base exception for all billing operations.

    Example:
        try:
            projector.apply_subscription_change(subscription, kind)
        except BillingError as e:
            logger.error(f"Billing operation failed: {e}")
    """

    default_error_code: str = "BILLING_ERROR"


class AuthenticationError(BillingError):
    """
    Raised when a webhook cannot be authenticated.

    Attributes:
        kind: "missing_signature" when the header is absent,
            "invalid_signature" when verification fails (bad HMAC,
            malformed header or timestamp outside tolerance)
    """

    default_error_code: str = "WEBHOOK_AUTHENTICATION_FAILED"

    MISSING_SIGNATURE = "missing_signature"
    INVALID_SIGNATURE = "invalid_signature"

    def __init__(
        self,
        message: str,
        kind: str = INVALID_SIGNATURE,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = {**(details or {}), "kind": kind}
        super().__init__(message, error_code=error_code, details=details)
        self.kind = kind


class MalformedPayloadError(BillingError):
    """
    Raised when an authenticated webhook body is unusable.

    Use for:
    - Body that is not valid JSON
    - JSON that is not an object
    - Event missing its id or type
    """

    default_error_code: str = "MALFORMED_PAYLOAD"


class CustomerNotFoundError(BillingError, NotFoundError):
    """
    Raised when no local billing customer matches a reference.

    Inside webhook handlers this is logged and treated as a no-op so the
    event is still marked processed. REST views render it as 404.
    """

    default_error_code: str = "CUSTOMER_NOT_FOUND"


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(BillingError, ExternalServiceError):
    """
    Base exception for all payment provider errors.

    Provides common attributes for provider error handling:
    - provider_code: The provider's own error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    Example:
        try:
            adapter.retrieve_subscription("sub_123")
        except ProviderError as e:
            if e.is_retryable:
                raise self.retry(exc=e)
            raise
    """

    default_error_code: str = "PROVIDER_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if provider_code:
            details["provider_code"] = provider_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider_code = provider_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class ProviderTransientError(ProviderError):
    """Transient provider failure. Retry with exponential backoff."""

    default_error_code: str = "PROVIDER_TRANSIENT_ERROR"
    is_retryable: bool = True


class ProviderRateLimitError(ProviderTransientError):
    """
    Rate limited by the provider API.

    Retry Strategy:
    - Exponential backoff starting at 1 second
    - At most STRIPE_MAX_RETRIES attempts
    """

    default_error_code: str = "PROVIDER_RATE_LIMITED"


class ProviderUnavailableError(ProviderTransientError):
    """
    Provider API is temporarily unavailable.

    This covers network connectivity issues, provider 5xx responses and
    timeouts. For creates, retries must reuse the same idempotency key
    because the original request may have succeeded.
    """

    default_error_code: str = "PROVIDER_UNAVAILABLE"


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class ProviderPermanentError(ProviderError):
    """Permanent provider failure. The same request will never succeed."""

    default_error_code: str = "PROVIDER_PERMANENT_ERROR"
    is_retryable: bool = False


class ProviderInvalidRequestError(ProviderPermanentError):
    """
    Invalid request parameters sent to the provider.

    Usually a bug on our side or a reference to an object that no longer
    exists. Log for developer investigation.
    """

    default_error_code: str = "PROVIDER_INVALID_REQUEST"


class ProviderAuthenticationError(ProviderPermanentError):
    """Provider rejected our API key. Operational issue, alert."""

    default_error_code: str = "PROVIDER_AUTHENTICATION_FAILED"


class PaymentDeclinedError(ProviderPermanentError):
    """
    Card was declined by the issuing bank.

    Attributes:
        category: "insufficient_funds" when the decline code says so,
            "card_declined" otherwise

    Example:
        except PaymentDeclinedError as e:
            if e.category == PaymentDeclinedError.INSUFFICIENT_FUNDS:
                message = "Your card has insufficient funds."
            else:
                message = "Your card was declined."
    """

    default_error_code: str = "PAYMENT_DECLINED"

    CARD_DECLINED = "card_declined"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.category = (
            self.INSUFFICIENT_FUNDS
            if decline_code == "insufficient_funds"
            else self.CARD_DECLINED
        )
        details = {**(details or {}), "category": self.category}
        super().__init__(
            message,
            error_code=error_code,
            provider_code=provider_code,
            decline_code=decline_code,
            details=details,
        )


def is_retryable_provider_error(error: Exception) -> bool:
    """
    Check if an error is a transient provider error.

    Args:
        error: The exception to check

    Returns:
        True if the error is a ProviderError flagged retryable
    """
    if isinstance(error, ProviderError):
        return getattr(error, "is_retryable", False)
    return False
