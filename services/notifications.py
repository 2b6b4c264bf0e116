"""
Expiration alerts for store owners and the queueing of follower fanout.

Everything here is fire-and-forget: dispatch goes through Celery, failures
are logged and never reach the caller of a quota or lifecycle operation.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from core.config import settings
from models.store import Store, StoreStatus
from services.feed import render_message
from services.lifecycle import ExpirationInfo
from tasks.notification_tasks import (
    deliver_notification_task,
    fanout_new_listing_task,
    fanout_store_deleted_task,
)

logger = logging.getLogger(__name__)

WARNING = "warning"
GRACE_PERIOD = "grace_period"
DEACTIVATED = "deactivated"
EXPIRATION_KINDS = (WARNING, GRACE_PERIOD, DEACTIVATED)

Dispatch = Callable[[int, Optional[int], str, str, Optional[int]], None]


def send_notification(user_id: int, store_id: Optional[int], kind: str, message: str, listing_id: Optional[int] = None) -> None:
    """Queue a feed entry for ``user_id``. Returns immediately and never raises."""
    try:
        deliver_notification_task.delay(user_id, store_id, kind, message, listing_id)
    except Exception:
        logger.exception("Failed to queue %s notification for user %s", kind, user_id)


def queue_follower_fanout(store_id: int, listing_id: int) -> None:
    try:
        fanout_new_listing_task.delay(store_id, listing_id)
    except Exception:
        logger.exception("Failed to queue follower fanout for store %s listing %s", store_id, listing_id)


def queue_store_deleted_fanout(store_id: int) -> None:
    try:
        fanout_store_deleted_task.delay(store_id)
    except Exception:
        logger.exception("Failed to queue store deletion fanout for store %s", store_id)


@dataclass(frozen=True)
class PendingAlert:
    """An expiration alert that has been stamped but not yet dispatched."""

    user_id: int
    store_id: Optional[int]
    kind: str
    message: str


class NotificationScheduler:
    """Decides which expiration alert is due and enforces the per-store cooldown.

    The cooldown is one timestamp per store shared by all alert kinds, so a
    grace-period alert inside 12 hours of a warning is suppressed.

    Deciding and dispatching are separate steps: :meth:`evaluate` only stamps
    ``last_notification_at`` and returns a :class:`PendingAlert`; the caller
    commits that stamp and then hands the alert to :meth:`deliver`. A failed
    commit therefore never leaves an alert sent without its cooldown.
    """

    def __init__(
        self,
        dispatch: Optional[Dispatch] = None,
        cooldown_hours: Optional[int] = None,
        warning_days: Optional[Iterable[int]] = None,
        grace_period_days: Optional[int] = None,
    ):
        self.dispatch = dispatch or send_notification
        self.cooldown = timedelta(
            hours=settings.NOTIFICATION_COOLDOWN_HOURS if cooldown_hours is None else cooldown_hours
        )
        self.warning_days = frozenset(settings.EXPIRATION_WARNING_DAYS if warning_days is None else warning_days)
        self.grace_period_days = settings.GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days

    def due_notification(self, store: Store, info: Optional[ExpirationInfo]) -> Optional[str]:
        if info is None:
            return None
        if store.status == StoreStatus.ACTIVE.value and info.days_until_expiration in self.warning_days:
            return WARNING
        if store.status == StoreStatus.GRACE_PERIOD.value and info.days_in_grace_period == self.grace_period_days:
            return GRACE_PERIOD
        if store.status == StoreStatus.DEACTIVATED.value and info.days_since_deactivation == 0:
            return DEACTIVATED
        return None

    def in_cooldown(self, store: Store, now: datetime) -> bool:
        last = store.last_notification_at
        return last is not None and now - last < self.cooldown

    def evaluate(self, store: Store, info: Optional[ExpirationInfo], now: Optional[datetime] = None) -> Optional[PendingAlert]:
        """Stamp and return the alert due for ``store``, if any. Nothing is dispatched."""
        kind = self.due_notification(store, info)
        if kind is None:
            return None
        return self.prepare(store, kind, now, info)

    def prepare(
        self,
        store: Store,
        kind: str,
        now: Optional[datetime] = None,
        info: Optional[ExpirationInfo] = None,
    ) -> Optional[PendingAlert]:
        now = now or datetime.utcnow()
        if kind not in EXPIRATION_KINDS:
            logger.error("Invalid expiration notification type %r for store %s", kind, store.id)
            return None
        if self.in_cooldown(store, now):
            logger.debug("Notification for store %s suppressed by cooldown (%s)", store.id, kind)
            return None

        try:
            message = render_message(kind, self._context(store, info))
        except Exception:
            logger.exception("Failed to render %s notification for store %s", kind, store.id)
            return None

        store.last_notification_at = now
        return PendingAlert(user_id=store.owner_id, store_id=store.id, kind=kind, message=message)

    def deliver(self, alert: PendingAlert) -> bool:
        try:
            self.dispatch(alert.user_id, alert.store_id, alert.kind, alert.message, None)
        except Exception:
            logger.exception("Failed to dispatch %s notification for store %s", alert.kind, alert.store_id)
            return False
        logger.info("Expiration notification sent for store %s: %s", alert.store_id, alert.kind)
        return True

    def send_expiration_notification(
        self,
        store: Store,
        kind: str,
        now: Optional[datetime] = None,
        info: Optional[ExpirationInfo] = None,
    ) -> bool:
        """Stamp and dispatch in one step, for callers that persist the stamp themselves."""
        alert = self.prepare(store, kind, now, info)
        if alert is None:
            return False
        return self.deliver(alert)

    def _context(self, store: Store, info: Optional[ExpirationInfo]) -> dict:
        grace_ends = store.grace_period_ends_at
        deactivated_at = store.deactivated_at
        return {
            "store_name": store.name,
            "days_left": info.days_until_expiration if info else 0,
            "grace_days": self.grace_period_days,
            "grace_ends_on": grace_ends.date().isoformat() if grace_ends else "",
            "archive_on": (
                (deactivated_at + timedelta(days=settings.ARCHIVE_AFTER_DAYS)).date().isoformat()
                if deactivated_at else ""
            ),
        }
