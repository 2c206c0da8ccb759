from celery import Celery

from bloodfinder.config import get_settings

settings = get_settings()

celery_app = Celery(
    "bloodfinder",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "tasks.notification_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
    },
)
