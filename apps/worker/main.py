"""Celery worker entrypoint for store maintenance.

Run with: celery -A apps.worker.main:celery_app worker -B -Q maintenance,default --loglevel=info

-B embeds the beat scheduler so the daily retention sweep fires without a
separate process. Run exactly one beat per deployment.

Tasks are registered by explicit import below, never by autodiscovery.
"""

from celery.signals import worker_process_init

from chatstore.celery import celery_app
from chatstore.logging import configure_logging, get_logger

# Registers chatstore.retention_sweep
from chatstore.tasks import retention_sweep_task  # noqa: F401


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Switch each worker process to structlog JSON output.

    Task log lines carry task_name and task_id, plus request_id when the
    enqueuer passed one.
    """
    configure_logging()
    get_logger(__name__).info("celery_worker_started", queue="maintenance")


__all__ = ["celery_app", "setup_worker_logging"]
