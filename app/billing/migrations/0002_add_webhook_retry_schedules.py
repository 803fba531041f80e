"""
Add celery-beat schedules for delivery-status processing.

Creates periodic tasks that requeue failed delivery events every 5 minutes
and reset events stuck in processing every 15 minutes.
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Retry Failed Delivery Events",
        "task": "billing.tasks.retry_failed_webhook_events",
        "every": 5,
        "description": (
            "Requeues failed delivery-status events that have not reached "
            "WEBHOOK_MAX_RETRIES."
        ),
    },
    {
        "name": "Reset Stuck Delivery Events",
        "task": "billing.tasks.cleanup_stuck_webhook_events",
        "every": 15,
        "description": (
            "Marks delivery-status events left in processing by a crashed "
            "worker as failed so they are retried."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for delivery-status processing."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
