"""
Celery configuration for the wallet billing backend.

Delivery-status webhooks are stored first and settled by background workers,
so a slow or locked wallet never blocks webhook intake. Periodic jobs (retrying
failed events, resetting stuck ones) run through celery-beat with the database
scheduler.

Tasks are auto-discovered from all installed Django apps.

Usage:
    from billing.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
