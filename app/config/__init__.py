# =============================================================================
# Billing Service Project Configuration
# =============================================================================
# Settings, URLs, ASGI/WSGI entry points and the Celery app.
#
# The Celery app is imported here so that it is loaded when Django starts
# and billing.tasks is registered for webhook processing and maintenance.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
