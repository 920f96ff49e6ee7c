"""
Webhook endpoint view for Stripe.

This module provides the HTTP endpoint for receiving Stripe webhooks.
The view hands the raw body and signature to WebhookIntake and maps the
outcome to a status code:

- 200: processed, duplicate, queued or ignored
- 400: missing/invalid signature or malformed payload (do not retry)
- 500: handler failed; the sender retries the delivery

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.exceptions import AuthenticationError, MalformedPayloadError
from billing.webhooks.intake import WebhookIntake


logger = logging.getLogger(__name__)


def get_intake() -> WebhookIntake:
    """Build the intake for a request (patched in tests)."""
    return WebhookIntake.from_settings()


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive Stripe webhook events.

    Security:
    - Signature verification prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Duplicate events return 200 without reprocessing

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    try:
        result = get_intake().receive(payload, signature)
    except AuthenticationError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"kind": e.kind, "error": e.message},
        )
        return JsonResponse(e.to_dict(), status=400)
    except MalformedPayloadError as e:
        logger.warning(
            "Webhook payload rejected",
            extra={"error": e.message},
        )
        return JsonResponse(e.to_dict(), status=400)
    except Exception as e:
        # Failure already recorded on the WebhookEvent by the intake
        logger.error(
            f"Webhook handler failed: {type(e).__name__}",
            extra={"error": str(e)},
        )
        return JsonResponse(
            {"error": "Webhook processing failed", "error_code": "WEBHOOK_FAILED"},
            status=500,
        )

    return JsonResponse(result.to_dict(), status=200)
