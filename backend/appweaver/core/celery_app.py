from celery import Celery
from appweaver.core.config import settings

# Create Celery app
celery_app = Celery(
    "appweaver",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "appweaver.modules.tool_execution.tasks",
        "appweaver.modules.deployment.tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    result_expires=settings.CELERY_RESULT_EXPIRES,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    broker_connection_retry_on_startup=True,
    task_routes={
        "appweaver.modules.tool_execution.tasks.*": {"queue": "tools"},
        "appweaver.modules.deployment.tasks.*": {"queue": "deployment"},
    },
)
