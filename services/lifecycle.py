"""
Store lifecycle: status derivation and transitions driven by elapsed time.

A store moves ``active -> grace_period -> deactivated -> archived``. Every
status change goes through :meth:`LifecycleEngine.apply_status_transition`
so the stored ``status`` never drifts from the timestamps it is derived
from. ``archived`` is terminal.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from core.config import settings
from core.errors import StateError, ValidationError
from models.store import Store, StorePlan, StoreStatus

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

ACTIVE = StoreStatus.ACTIVE.value
GRACE_PERIOD = StoreStatus.GRACE_PERIOD.value
DEACTIVATED = StoreStatus.DEACTIVATED.value
ARCHIVED = StoreStatus.ARCHIVED.value


@dataclass(frozen=True)
class StatusTransition:
    store_id: Optional[int]
    old_status: str
    new_status: str

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


@dataclass(frozen=True)
class ExpirationInfo:
    status: str
    days_until_expiration: int
    days_in_grace_period: int
    days_since_deactivation: int
    can_reactivate: bool
    next_action: str
    next_action_date: Optional[date]


@dataclass(frozen=True)
class ExpiredStoreActions:
    can_renew: bool
    can_reactivate: bool
    can_archive: bool
    recommended_action: str


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / ONE_DAY)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Return a naive UTC datetime, or raise ValueError for unusable input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        return coerce_timestamp(datetime.fromisoformat(value))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


class LifecycleEngine:
    def __init__(self, grace_period_days: Optional[int] = None, archive_after_days: Optional[int] = None):
        self.grace_period = timedelta(
            days=settings.GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days
        )
        self.archive_after = timedelta(
            days=settings.ARCHIVE_AFTER_DAYS if archive_after_days is None else archive_after_days
        )

    def compute_status(self, store: Store, now: Optional[datetime] = None) -> str:
        """Derive the status from timestamps. Pure: never mutates ``store``."""
        now = now or datetime.utcnow()
        if store.status == ARCHIVED:
            return ARCHIVED

        expires_at = store.expires_at
        grace_ends_at = store.grace_period_ends_at
        deactivated_at = store.deactivated_at

        if deactivated_at is not None and now - deactivated_at >= self.archive_after:
            return ARCHIVED
        if expires_at is None:
            return store.status
        if now > expires_at and grace_ends_at is not None and now <= grace_ends_at:
            return GRACE_PERIOD
        if now > expires_at and (grace_ends_at is None or now > grace_ends_at):
            return DEACTIVATED
        if now <= expires_at:
            return ACTIVE
        return store.status

    def _next_status(self, store: Store, now: datetime) -> str:
        status = self.compute_status(store, now)
        # A store that has just expired enters grace once; the grace window
        # has not been stamped yet, so compute_status alone reports it as
        # deactivated.
        if (
            status == DEACTIVATED
            and store.grace_period_ends_at is None
            and store.deactivated_at is None
            and store.expires_at is not None
            and now <= store.expires_at + self.grace_period
        ):
            return GRACE_PERIOD
        return status

    def apply_status_transition(self, store: Store, now: Optional[datetime] = None) -> StatusTransition:
        """Move ``store`` to its derived status and stamp set-once timestamps.

        Idempotent: re-applying with the same or a later ``now`` after a
        transition has happened changes nothing, because every timestamp is
        only written when it is still unset.
        """
        now = now or datetime.utcnow()
        old_status = store.status
        new_status = self._next_status(store, now)
        if new_status == old_status:
            return StatusTransition(store.id, old_status, new_status)

        if new_status == GRACE_PERIOD and store.grace_period_ends_at is None:
            store.grace_period_ends_at = store.expires_at + self.grace_period
            store.is_active = True
            logger.info("Grace period started for store %s, ends at %s", store.id, store.grace_period_ends_at)
        elif new_status == DEACTIVATED and store.deactivated_at is None:
            store.deactivated_at = now
            store.is_active = False
            logger.warning("Store %s deactivated", store.id)
        elif new_status == ARCHIVED and store.archived_at is None:
            store.archived_at = now
            store.is_active = False
            logger.info("Store %s auto-archived %s after deactivation", store.id, self.archive_after)

        store.status = new_status
        logger.info("Store %s status changed: %s -> %s", store.id, old_status, new_status)
        return StatusTransition(store.id, old_status, new_status)

    def renew(self, store: Store, plan: StorePlan, now: Optional[datetime] = None) -> Store:
        if store.status == ARCHIVED:
            raise StateError(
                "Archived stores cannot be renewed",
                code="store.archived",
                meta={"store_id": store.id},
            )
        if plan is None or not plan.duration_days or plan.duration_days <= 0:
            raise ValidationError("Plan must have a positive duration", meta={"plan_id": getattr(plan, "id", None)})
        ads_used = store.ads_used or 0
        if plan.max_ads < ads_used:
            raise StateError(
                "Plan allows fewer listings than the store already uses",
                code="store.plan_too_small",
                meta={"store_id": store.id, "plan_id": plan.id, "max_ads": plan.max_ads, "ads_used": ads_used},
            )

        now = now or datetime.utcnow()
        store.plan = plan
        store.plan_id = plan.id
        store.expires_at = now + timedelta(days=plan.duration_days)
        store.status = ACTIVE
        store.is_active = True
        store.grace_period_ends_at = None
        store.deactivated_at = None
        store.archived_at = None
        store.max_ads = plan.max_ads
        logger.info("Store %s renewed on plan %s until %s", store.id, plan.id, store.expires_at)
        return store

    def can_reactivate(self, store: Store) -> bool:
        return store.status == DEACTIVATED and store.archived_at is None

    def reactivate(self, store: Store, plan: StorePlan, now: Optional[datetime] = None) -> Store:
        if not self.can_reactivate(store):
            raise StateError(
                "Store cannot be reactivated",
                code="store.not_reactivatable",
                meta={"store_id": store.id, "status": store.status},
            )
        logger.info("Reactivating store %s", store.id)
        return self.renew(store, plan, now)

    def archive(self, store: Store, now: Optional[datetime] = None) -> Store:
        """Owner-initiated deletion; converges on the same terminal state as auto-archival."""
        if store.status == ARCHIVED or store.archived_at is not None:
            raise StateError("Store is already deleted", code="store.archived", meta={"store_id": store.id})
        store.status = ARCHIVED
        store.archived_at = now or datetime.utcnow()
        store.is_active = False
        return store

    def expiration_info(self, store: Store, now: Optional[datetime] = None) -> Optional[ExpirationInfo]:
        """Project expiration counters for display and notification thresholds.

        Returns ``None`` when the stored timestamps are unusable so a batch
        over many stores never fails on one bad row.
        """
        now = now or datetime.utcnow()
        try:
            expires_at = coerce_timestamp(store.expires_at)
            grace_ends_at = coerce_timestamp(store.grace_period_ends_at)
            deactivated_at = coerce_timestamp(store.deactivated_at)
            if expires_at is None:
                raise ValueError("expires_at is missing")
        except (TypeError, ValueError) as exc:
            logger.error("Invalid lifecycle timestamps for store %s: %s", store.id, exc)
            return None

        days_until_expiration = ceil_days(expires_at - now)
        days_in_grace_period = ceil_days(grace_ends_at - now) if grace_ends_at else 0
        days_since_deactivation = ceil_days(now - deactivated_at) if deactivated_at else 0

        next_action = ""
        next_action_date = None
        if store.status == ACTIVE:
            if days_until_expiration <= self.grace_period.days:
                next_action = "Store expires soon - renew to keep it running"
            else:
                next_action = "Store is active"
            next_action_date = expires_at.date()
        elif store.status == GRACE_PERIOD:
            next_action = "Grace period is ending - renew now"
            next_action_date = grace_ends_at.date() if grace_ends_at else None
        elif store.status == DEACTIVATED:
            if deactivated_at and days_since_deactivation < self.archive_after.days:
                next_action = "Reactivate before the store is archived"
                next_action_date = (deactivated_at + self.archive_after).date()
            else:
                next_action = "Store is due for archival"
        elif store.status == ARCHIVED:
            next_action = "Store is archived"

        return ExpirationInfo(
            status=store.status,
            days_until_expiration=days_until_expiration,
            days_in_grace_period=days_in_grace_period,
            days_since_deactivation=days_since_deactivation,
            can_reactivate=store.status == DEACTIVATED,
            next_action=next_action,
            next_action_date=next_action_date,
        )

    def expired_store_actions(self, store: Store, now: Optional[datetime] = None) -> ExpiredStoreActions:
        now = now or datetime.utcnow()
        days_since_deactivation = ceil_days(now - store.deactivated_at) if store.deactivated_at else 0
        archive_days = self.archive_after.days

        if store.status == ACTIVE:
            recommended = "Store is active - no action needed"
        elif store.status == GRACE_PERIOD:
            recommended = "Renew immediately - the grace period is ending"
        elif store.status == DEACTIVATED:
            if days_since_deactivation < 30:
                recommended = "Reactivate soon to avoid archival"
            elif days_since_deactivation < archive_days:
                recommended = "Last chance - reactivate before archival"
            else:
                recommended = "Store is due for archival"
        else:
            recommended = "Store is archived"

        return ExpiredStoreActions(
            can_renew=store.status in (ACTIVE, GRACE_PERIOD),
            can_reactivate=self.can_reactivate(store),
            can_archive=store.status == DEACTIVATED and days_since_deactivation >= archive_days,
            recommended_action=recommended,
        )
