"""Celery task for the retention sweep.

Worker behaviour:
1. Resolve the retention window (argument, else RETENTION_DAYS).
2. Run the sweep against the app's session factory.
3. Return the deletion count. The sweep itself never raises, so the task
   never retries.
"""

from chatstore.celery import celery_app
from chatstore.logging import clear_task_context, configure_task_logging, get_logger
from chatstore.services.retention import retention_sweep

logger = get_logger(__name__)

TASK_NAME = "chatstore.retention_sweep"


def run_retention_sweep(days: int | None = None) -> dict:
    """Run one sweep and return a JSON-serializable summary."""
    result = retention_sweep(days=days)
    return {"status": "completed", "deleted": result.deleted}


@celery_app.task(bind=True, max_retries=0, name=TASK_NAME)
def retention_sweep_task(self, days: int | None = None, request_id: str | None = None) -> dict:
    """Delete expired, unpinned conversations.

    Args:
        days: Retention window in days. Defaults to RETENTION_DAYS.
        request_id: Optional correlation ID for logging.

    Returns:
        Dict with result status and the number of conversations deleted.
    """
    configure_task_logging(request_id=request_id, task_name=TASK_NAME, task_id=self.request.id)
    try:
        logger.info("retention_task_started", days=days)
        summary = run_retention_sweep(days)
        logger.info("retention_task_completed", deleted=summary["deleted"])
        return summary
    finally:
        clear_task_context()
