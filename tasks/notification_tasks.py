import logging

from core.celery import celery_app
from core.db import db_session
from services.fanout import FollowerFanout
from services.feed import NotificationFeed

logger = logging.getLogger(__name__)


def _backoff(retries: int) -> int:
    return min(2 ** retries, 60)  # Max 60 seconds


@celery_app.task(bind=True, max_retries=3)
def deliver_notification_task(self, user_id: int, store_id: int, kind: str, message: str, listing_id: int | None = None):
    """Append one entry to a user's notification feed."""
    try:
        with db_session() as db:
            notification = NotificationFeed(db).append(user_id, store_id, kind, message, listing_id=listing_id)
            notification_id = notification.id
    except Exception as exc:
        logger.warning("Notification delivery to user %s failed: %s", user_id, exc)
        raise self.retry(exc=exc, countdown=_backoff(self.request.retries))
    return {"status": "delivered", "notification_id": notification_id}


@celery_app.task(bind=True, max_retries=3)
def fanout_new_listing_task(self, store_id: int, listing_id: int):
    """
    Notify every follower of ``store_id`` about ``listing_id``.
    A retry may repeat notifications already written; duplicates are tolerated.
    """
    try:
        with db_session() as db:
            notified = FollowerFanout(db).notify_followers(store_id, listing_id)
    except Exception as exc:
        logger.warning("Follower fanout for store %s listing %s failed: %s", store_id, listing_id, exc)
        raise self.retry(exc=exc, countdown=_backoff(self.request.retries))
    return {"status": "sent", "store_id": store_id, "notified": notified}


@celery_app.task(bind=True, max_retries=3)
def fanout_store_deleted_task(self, store_id: int):
    try:
        with db_session() as db:
            notified = FollowerFanout(db).notify_store_deleted(store_id)
    except Exception as exc:
        logger.warning("Store deletion fanout for store %s failed: %s", store_id, exc)
        raise self.retry(exc=exc, countdown=_backoff(self.request.retries))
    return {"status": "sent", "store_id": store_id, "notified": notified}
