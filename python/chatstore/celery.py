"""Celery application configuration.

The worker runs store maintenance (the retention sweep) on a beat schedule.

Usage:
    from chatstore.celery import celery_app

    # Enqueue task:
    celery_app.send_task("chatstore.retention_sweep", kwargs={"days": 30})

    # Or import task directly:
    from chatstore.tasks import retention_sweep_task
    retention_sweep_task.apply_async(kwargs={"days": 30}, queue="maintenance")

    # Worker + scheduler:
    celery -A chatstore.celery worker -B -Q maintenance,default
"""

from celery import Celery
from celery.schedules import crontab

from chatstore.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery("chatstore", include=["chatstore.tasks.retention_sweep"])

# Configure from settings
celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Queue routing for maintenance tasks
celery_app.conf.task_routes = {
    "chatstore.retention_sweep": {"queue": "maintenance"},
}

# Default queue
celery_app.conf.task_default_queue = "default"

# Daily sweep at 03:00 UTC; days falls back to RETENTION_DAYS inside the task
celery_app.conf.beat_schedule = {
    "retention-sweep-daily": {
        "task": "chatstore.retention_sweep",
        "schedule": crontab(hour=3, minute=0),
    },
}

# For testing: allow eager mode (synchronous execution)
celery_app.conf.task_always_eager = False


def get_celery_app() -> Celery:
    """Get the Celery application instance.

    Returns:
        Configured Celery application.
    """
    return celery_app
