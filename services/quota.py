"""
Ad-slot quota bookkeeping for stores.

Slot reservation is a single conditional UPDATE, so concurrent listing
creation cannot push ``ads_used`` past ``max_ads``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from core.errors import QuotaExceededError, ValidationError
from models.store import Store, StoreStatus

logger = logging.getLogger(__name__)

LISTABLE_STATUSES = (StoreStatus.ACTIVE.value, StoreStatus.GRACE_PERIOD.value)

ListingAddedHook = Callable[[int, int], None]


@dataclass(frozen=True)
class StoreUsage:
    used: int
    max: int
    remaining: int
    deleted: int


def as_counter(value: Any) -> int:
    """Counters that are missing or not numeric count as zero."""
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def can_add_listing(store: Store) -> bool:
    if store.status not in LISTABLE_STATUSES:
        return False
    return as_counter(store.ads_used) < as_counter(store.max_ads)


def _validate_listing_id(listing_id: Any) -> int:
    if isinstance(listing_id, bool) or not isinstance(listing_id, int) or listing_id <= 0:
        raise ValidationError("Invalid listing ID", meta={"listing_id": listing_id})
    return listing_id


class QuotaTracker:
    def __init__(self, db: Session, on_listing_added: Optional[ListingAddedHook] = None):
        self.db = db
        self.on_listing_added = on_listing_added

    def add_listing(self, store: Store, listing_id: int) -> int:
        """Reserve one slot for ``listing_id`` and return the new ``ads_used``."""
        _validate_listing_id(listing_id)
        if store.status not in LISTABLE_STATUSES:
            raise QuotaExceededError(
                "Store is not accepting new listings",
                code="store.not_accepting_listings",
                meta={"store_id": store.id, "status": store.status},
            )
        if not can_add_listing(store):
            raise QuotaExceededError(
                "Store listing limit reached",
                meta={"store_id": store.id, "max_ads": as_counter(store.max_ads)},
            )

        used = func.coalesce(Store.ads_used, 0)
        result = self.db.execute(
            update(Store)
            .where(
                Store.id == store.id,
                Store.status.in_(LISTABLE_STATUSES),
                used < Store.max_ads,
            )
            .values(ads_used=used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another writer took the last slot between the check and the update
            self.db.rollback()
            raise QuotaExceededError(
                "Store listing limit reached",
                meta={"store_id": store.id, "max_ads": as_counter(store.max_ads)},
            )
        self.db.commit()
        self.db.refresh(store)
        logger.info("Listing %s added to store %s (%s/%s)", listing_id, store.id, store.ads_used, store.max_ads)

        self._listing_added(store.id, listing_id)
        return store.ads_used

    def _listing_added(self, store_id: int, listing_id: int) -> None:
        if self.on_listing_added is None:
            return
        try:
            self.on_listing_added(store_id, listing_id)
        except Exception:
            logger.exception("Failed to queue follower fanout for store %s listing %s", store_id, listing_id)

    def remove_listing(self, store: Store, listing_id: int) -> int:
        """Release one slot. The early-deletion ledger is left alone."""
        _validate_listing_id(listing_id)
        used = func.coalesce(Store.ads_used, 0)
        self.db.execute(
            update(Store)
            .where(Store.id == store.id)
            .values(ads_used=case((used > 0, used - 1), else_=0))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(store)
        logger.info("Listing %s removed from store %s (%s/%s)", listing_id, store.id, store.ads_used, store.max_ads)
        return store.ads_used

    def delete_listing_early(self, store: Store, listing_id: int) -> bool:
        """Record ``listing_id`` in the early-deletion ledger; False if already there."""
        _validate_listing_id(listing_id)
        ledger = list(store.deleted_listings or [])
        if listing_id in ledger:
            logger.warning("Listing %s already recorded as deleted early in store %s", listing_id, store.id)
            return False

        store.deleted_listings = ledger + [listing_id]
        self.db.commit()
        logger.info(
            "Listing %s deleted early from store %s (total deleted: %s)",
            listing_id, store.id, len(store.deleted_listings),
        )
        return True

    @staticmethod
    def get_store_usage(store: Store) -> StoreUsage:
        used = as_counter(store.ads_used)
        maximum = as_counter(store.max_ads)
        ledger = store.deleted_listings if isinstance(store.deleted_listings, list) else []
        return StoreUsage(used=used, max=maximum, remaining=max(0, maximum - used), deleted=len(ledger))
