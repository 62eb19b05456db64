"""Tests for the Celery wiring of the retention sweep."""

from celery.schedules import crontab

from chatstore.celery import get_celery_app
from chatstore.schemas.settings import RetentionResult
from chatstore.tasks import retention_sweep as retention_task_module
from chatstore.tasks.retention_sweep import TASK_NAME, retention_sweep_task, run_retention_sweep


class TestRunRetentionSweep:
    def test_summary(self, monkeypatch):
        seen = {}

        def fake_sweep(days=None):
            seen["days"] = days
            return RetentionResult(deleted=3)

        monkeypatch.setattr(retention_task_module, "retention_sweep", fake_sweep)

        assert run_retention_sweep(7) == {"status": "completed", "deleted": 3}
        assert seen == {"days": 7}

    def test_task_runs_locally(self, monkeypatch):
        monkeypatch.setattr(
            retention_task_module, "retention_sweep", lambda days=None: RetentionResult(deleted=0)
        )

        result = retention_sweep_task.apply(kwargs={"days": 5, "request_id": "req-1"})

        assert result.get() == {"status": "completed", "deleted": 0}


class TestCeleryConfig:
    def test_task_registered(self):
        assert TASK_NAME in get_celery_app().tasks

    def test_routed_to_maintenance_queue(self):
        assert get_celery_app().conf.task_routes[TASK_NAME] == {"queue": "maintenance"}

    def test_daily_beat_schedule(self):
        entry = get_celery_app().conf.beat_schedule["retention-sweep-daily"]
        assert entry["task"] == TASK_NAME
        assert entry["schedule"] == crontab(hour=3, minute=0)


def test_worker_entrypoint_exports_app():
    from apps.worker import celery_app

    assert celery_app is get_celery_app()
    assert TASK_NAME in celery_app.tasks
