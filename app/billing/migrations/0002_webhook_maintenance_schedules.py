"""
Add celery-beat schedules for webhook maintenance.

This migration creates the periodic task schedules for:
- retry_failed_webhooks: every 5 minutes, re-queues failed events
- purge_old_webhook_events: daily, enforces the retention window
"""

from django.db import migrations

RETRY_TASK_NAME = "Retry Failed Billing Webhooks"
PURGE_TASK_NAME = "Purge Old Billing Webhooks"


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for webhook maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # Create interval schedule: every 5 minutes
    every_five_minutes, _ = IntervalSchedule.objects.get_or_create(
        every=5,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=RETRY_TASK_NAME,
        defaults={
            "task": "billing.tasks.retry_failed_webhooks",
            "interval": every_five_minutes,
            "enabled": True,
            "description": (
                "Re-queues failed webhook events under the retry cap and "
                "pending events that were never picked up."
            ),
        },
    )

    # Daily at 03:30 UTC
    nightly, _ = CrontabSchedule.objects.get_or_create(
        minute="30",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
        timezone="UTC",
    )

    PeriodicTask.objects.get_or_create(
        name=PURGE_TASK_NAME,
        defaults={
            "task": "billing.tasks.purge_old_webhook_events",
            "crontab": nightly,
            "enabled": True,
            "description": (
                "Deletes processed webhook events older than "
                "BILLING_WEBHOOK_RETENTION_DAYS."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[RETRY_TASK_NAME, PURGE_TASK_NAME],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
