"""
Celery configuration for the billing service.

Celery runs the webhook processing that is deferred out of the request
(BILLING_WEBHOOK_PROCESS_ASYNC) and the periodic maintenance jobs:
- retry_failed_webhooks: re-queues failed and stale pending events
- purge_old_webhook_events: trims processed events past retention

Schedules live in the database (django-celery-beat) and are created by
billing's data migration. Tasks are auto-discovered from installed apps.

Usage:
    from billing.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
# The name should match the Django project name
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all registered Django apps
# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
