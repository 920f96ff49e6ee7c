"""
Celery tasks for billing.

This module provides async tasks for:
- Processing recorded webhook events
- Retrying failed (and never-processed) webhook events
- Purging old processed webhook events (retention)
- Reporting usage debits to the provider as meter events

Usage:
    from billing.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))

Periodic schedules for retry_failed_webhooks and purge_old_webhook_events
are created by migration 0002 (django-celery-beat).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from billing.config import get_billing_config
from billing.exceptions import ProviderTransientError
from billing.models import WebhookEvent
from billing.services.usage import UsageService
from billing.state_machines import WebhookEventStatus
from billing.webhooks.intake import WebhookIntake

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_TASK_RETRIES = 5
STALE_PENDING_THRESHOLD_MINUTES = 10
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_TASK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a recorded webhook event asynchronously.

    Delegates to WebhookIntake.process(), which locks the event row,
    skips already-processed events and commits handler effects together
    with the processed mark.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    logger.info(
        "Processing webhook event",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "task_retries": self.request.retries,
        },
    )

    try:
        result = WebhookIntake.from_settings().process(webhook_event_id)
    except WebhookEvent.DoesNotExist:
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    return result.to_dict()


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Re-queues failed events under BILLING_MAX_WEBHOOK_RETRIES, plus
    pending events that were recorded but never picked up (for example
    when queuing failed after receipt).

    Returns:
        Dict with count of webhooks queued for retry
    """
    config = get_billing_config()
    stale_cutoff = timezone.now() - timedelta(minutes=STALE_PENDING_THRESHOLD_MINUTES)

    failed = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=config.max_webhook_retries,
    )
    stale_pending = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PENDING,
        created_at__lt=stale_cutoff,
    )
    candidates = (failed | stale_pending).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in candidates:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "status": webhook.status,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


@shared_task
def purge_old_webhook_events(days: int | None = None) -> dict:
    """
    Periodic task enforcing the webhook retention policy.

    Removes processed events older than BILLING_WEBHOOK_RETENTION_DAYS.
    Failed and pending events are kept for investigation.

    Args:
        days: Override the configured retention window

    Returns:
        Dict with count of webhooks deleted
    """
    retention_days = days if days is not None else get_billing_config().webhook_retention_days
    cutoff = timezone.now() - timedelta(days=retention_days)

    deleted_count, _ = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}


# =============================================================================
# Usage Reporting Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(ProviderTransientError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_TASK_RETRIES},
    acks_late=True,
)
def report_usage_event(self, transaction_id: str) -> dict:
    """
    Report a usage debit to the provider as a billing meter event.

    Queued by UsageService after the debit commits. The ledger transaction
    id doubles as the meter event identifier, so retries and redeliveries
    are deduplicated by the provider.

    Args:
        transaction_id: UUID of the debit CreditTransaction

    Returns:
        Dict with reporting status

    Raises:
        ProviderTransientError: Re-raised to trigger Celery retry mechanism
    """
    logger.info(
        "Reporting usage event",
        extra={
            "transaction_id": str(transaction_id),
            "task_retries": self.request.retries,
        },
    )

    result = UsageService.from_settings().report(transaction_id)
    if result is None:
        return {"status": "skipped", "transaction_id": str(transaction_id)}

    return {"status": "reported", "transaction_id": str(transaction_id)}
