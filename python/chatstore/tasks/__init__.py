"""Celery tasks for chatstore.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in worker:
    from chatstore.tasks import retention_sweep_task

Usage in API (enqueue):
    from chatstore.tasks import retention_sweep_task
    retention_sweep_task.apply_async(kwargs={"days": 30}, queue="maintenance")
"""

from chatstore.tasks.retention_sweep import retention_sweep_task

__all__ = ["retention_sweep_task"]
