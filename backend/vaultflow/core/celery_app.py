from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "vaultflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={
        "vaultflow.services.flows.run_web_scout_task": {"queue": "flows"},
        "vaultflow.services.flows.run_scheduled_web_scout": {"queue": "flows"},
        "vaultflow.services.flows.run_scheduled_topic_report": {"queue": "flows"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("vaultflow.services.flows",),
    beat_schedule={
        # Unattended daily scout over the configured domain allow-list
        "daily-web-scout": {
            "task": "vaultflow.services.flows.run_scheduled_web_scout",
            "schedule": crontab(hour=6, minute=0),
        },
        # Replays every active saved topic after the scout has run
        "daily-topic-report": {
            "task": "vaultflow.services.flows.run_scheduled_topic_report",
            "schedule": crontab(hour=7, minute=0),
        },
        "sweep-stale-runs": {
            "task": "vaultflow.services.flows.sweep_stale_runs_task",
            "schedule": crontab(minute="*/15"),
        },
    },
)
