import logging
from typing import List, Optional, Set

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.store import Store, store_followers
from services.feed import NotificationFeed, render_message

logger = logging.getLogger(__name__)


class FollowerFanout:
    """Store followers and the notifications sent to them.

    Runs inside Celery tasks; callers on the listing path only queue work.
    """

    def __init__(self, db: Session, feed: Optional[NotificationFeed] = None):
        self.db = db
        self.feed = feed or NotificationFeed(db)

    def follower_ids(self, store_id: int) -> Set[int]:
        rows = self.db.execute(
            select(store_followers.c.user_id).where(store_followers.c.store_id == store_id)
        ).scalars()
        return set(rows)

    def is_following(self, store_id: int, user_id: int) -> bool:
        return user_id in self.follower_ids(store_id)

    def follow(self, store_id: int, user_id: int) -> bool:
        if self.is_following(store_id, user_id):
            logger.warning("User %s already follows store %s", user_id, store_id)
            return False
        try:
            self.db.execute(insert(store_followers).values(store_id=store_id, user_id=user_id))
            self.db.commit()
        except IntegrityError:
            # Concurrent follow of the same pair; the set already holds it
            self.db.rollback()
            return False
        logger.info("User %s followed store %s", user_id, store_id)
        return True

    def unfollow(self, store_id: int, user_id: int) -> bool:
        result = self.db.execute(
            delete(store_followers).where(
                store_followers.c.store_id == store_id,
                store_followers.c.user_id == user_id,
            )
        )
        self.db.commit()
        if not result.rowcount:
            logger.warning("User %s was not following store %s", user_id, store_id)
            return False
        logger.info("User %s unfollowed store %s", user_id, store_id)
        return True

    def followed_store_ids(self, user_id: int) -> List[int]:
        return list(
            self.db.execute(
                select(store_followers.c.store_id)
                .where(store_followers.c.user_id == user_id)
                .order_by(store_followers.c.store_id)
            ).scalars()
        )

    def _fan_out(self, store_id: int, kind: str, listing_id: Optional[int] = None) -> int:
        store = self.db.get(Store, store_id)
        if store is None or not store.name:
            logger.warning("Store %s not found for follower notification", store_id)
            return 0

        followers = self.follower_ids(store_id)
        if not followers:
            logger.debug("No followers to notify for store %s", store_id)
            return 0

        message = render_message(kind, {"store_name": store.name})
        for user_id in sorted(followers):
            self.feed.append(user_id, store_id, kind, message, listing_id=listing_id)
        logger.info("Notified %s followers of store %s (%s)", len(followers), store_id, kind)
        return len(followers)

    def notify_followers(self, store_id: int, listing_id: int) -> int:
        return self._fan_out(store_id, "new_listing", listing_id)

    def notify_store_deleted(self, store_id: int) -> int:
        return self._fan_out(store_id, "store_deleted")
