from celery import Celery
from core.config import settings

# Redis is both broker and result backend
broker_url = settings.REDIS_URL
backend_url = settings.REDIS_URL

celery_app = Celery(
    "classifieds_stores",
    broker=broker_url,
    backend=backend_url,
    include=["tasks.notification_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    task_acks_late=True,  # fanout is at-least-once
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_ignore_result=True,
    task_always_eager=settings.TESTING,
    task_eager_propagates=False,
    task_routes={
        "tasks.notification_tasks.fanout_new_listing_task": {"queue": "fanout"},
        "tasks.notification_tasks.fanout_store_deleted_task": {"queue": "fanout"},
        "tasks.notification_tasks.deliver_notification_task": {"queue": "notifications"},
    },
)
