"""
Celery application for BetaLift background work.

Two kinds of work run here: Web Push fan-out for freshly emitted
notifications (``push`` queue) and periodic maintenance scheduled by beat
(``maintenance`` queue). Start a worker for both with:

    celery -A betalift.tasks.celery_app worker -Q push,maintenance --beat
"""
import os

from celery import Celery
from celery.signals import after_setup_logger, after_setup_task_logger, task_postrun
from kombu import Queue

from config.settings import Config

TASK_MODULES = (
    "betalift.tasks.notification_delivery",
    "betalift.tasks.maintenance",
)


def _route_task(name, args, kwargs, options, task=None, **kw):
    if name.startswith("betalift.tasks.notification_delivery."):
        return {"queue": "push"}
    if name.startswith("betalift.tasks.maintenance."):
        return {"queue": "maintenance"}
    return None


def make_celery(app_name="betalift"):
    """Create and configure the Celery application."""
    config = Config()

    app = Celery(
        app_name,
        broker=config.CELERY_BROKER_URL,
        backend=config.CELERY_RESULT_BACKEND,
        include=list(TASK_MODULES),
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        broker_connection_retry_on_startup=True,
        # Nothing reads task results; stats are logged instead
        task_ignore_result=True,
        task_queues=(Queue("push"), Queue("maintenance")),
        task_default_queue="push",
        task_routes=(_route_task,),
        beat_schedule={
            "cleanup-old-notifications": {
                "task": "betalift.tasks.maintenance.cleanup_old_notifications_task",
                "schedule": 86400.0,  # daily
                "args": (config.NOTIFICATION_RETENTION_DAYS,),
            },
            "reconcile-feedback-counters": {
                "task": "betalift.tasks.maintenance.reconcile_feedback_counters_task",
                "schedule": float(config.COUNTER_RECONCILE_INTERVAL_SECONDS),
            },
            "reconcile-project-counters": {
                "task": "betalift.tasks.maintenance.reconcile_project_counters_task",
                "schedule": float(config.COUNTER_RECONCILE_INTERVAL_SECONDS),
            },
        },
    )
    return app


celery_app = make_celery()


def _worker_instance_path() -> str:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    return os.environ.get("BETALIFT_INSTANCE_PATH") or os.path.join(
        repo_root, "instance"
    )


@after_setup_logger.connect
@after_setup_task_logger.connect
def _setup_worker_logging(logger, *args, **kwargs):  # pragma: no cover - logging init
    from betalift.structured_logging import configure_structlog_celery

    try:
        configure_structlog_celery(_worker_instance_path())
    except OSError:
        # Unwritable log dir: keep Celery's stderr logging
        pass


@task_postrun.connect
def _cleanup_db_session(*args, **kwargs):  # pragma: no cover - simple guard
    """Release the task's SQLAlchemy session so connections are not held."""
    from flask import has_app_context

    from betalift.models import db

    # Sessions are scoped to the app context each task opens
    if has_app_context():
        db.session.remove()
