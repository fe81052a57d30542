"""Celery application configuration.

Central configuration for Celery used by the worker, the beat scheduler and
anything that needs to enqueue a task by name.

Usage:
    from casesync.celery import celery_app

    # Enqueue task:
    celery_app.send_task("process_document_queue")

Beat schedule:
    process_document_queue    every minute (batch-limited)
    sweep_stale_queue_items   every 5 minutes
    cleanup_processing_queue  daily
"""

from celery import Celery

from casesync.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery("casesync")

# Configure from settings
celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Queue routing for classification work
celery_app.conf.task_routes = {
    "process_document_queue": {"queue": "processing"},
}

# Default queue
celery_app.conf.task_default_queue = "default"

celery_app.conf.beat_schedule = {
    "process-document-queue": {
        "task": "process_document_queue",
        "schedule": 60.0,
    },
    "sweep-stale-queue-items": {
        "task": "sweep_stale_queue_items",
        "schedule": 300.0,
    },
    "cleanup-processing-queue": {
        "task": "cleanup_processing_queue",
        "schedule": 86400.0,
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
