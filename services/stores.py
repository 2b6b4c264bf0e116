"""
Store operations exposed to routes and background jobs.

``StoreService`` loads stores by id and wires the lifecycle, quota, discount
and notification components together. Every status read or write goes
through ``LifecycleEngine.apply_status_transition``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from core.errors import NotFoundError, StateError, ValidationError
from models.listing import Listing
from models.store import Store, StoreStatus
from services import notifications as notification_service
from services import plans as plan_service
from services.discounts import BatchResult, DiscountEngine, DiscountSummary, to_decimal, validate_percentage
from services.fanout import FollowerFanout
from services.lifecycle import ExpirationInfo, ExpiredStoreActions, LifecycleEngine, StatusTransition
from services.listings import ListingRepository
from services.notifications import NotificationScheduler
from services.quota import QuotaTracker, StoreUsage, as_counter, can_add_listing

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description", "phone", "email", "website", "whatsapp", "address")


@dataclass
class SweepResult:
    checked: int = 0
    transitioned: int = 0
    notified: int = 0
    failed: int = 0


def _validate_id(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid {label} ID", meta={f"{label}_id": value})
    return value


class StoreService:
    def __init__(
        self,
        db: Session,
        lifecycle: Optional[LifecycleEngine] = None,
        scheduler: Optional[NotificationScheduler] = None,
        listings: Optional[ListingRepository] = None,
        quota: Optional[QuotaTracker] = None,
        discounts: Optional[DiscountEngine] = None,
        followers: Optional[FollowerFanout] = None,
    ):
        self.db = db
        self.lifecycle = lifecycle or LifecycleEngine()
        self.scheduler = scheduler or NotificationScheduler(dispatch=notification_service.send_notification)
        self.listings = listings or ListingRepository(db)
        self.quota = quota or QuotaTracker(db, on_listing_added=notification_service.queue_follower_fanout)
        self.discounts = discounts or DiscountEngine(self.listings)
        self.followers = followers or FollowerFanout(db)

    # Lookups

    def get_store(self, store_id: int, for_update: bool = False) -> Store:
        _validate_id(store_id, "store")
        qs = self.db.query(Store).filter(Store.id == store_id)
        if for_update:
            qs = qs.with_for_update().populate_existing()
        store = qs.one_or_none()
        if not store:
            raise NotFoundError("Store not found", code="store.not_found", meta={"store_id": store_id})
        return store

    def get_stores_by_status(self, status: str) -> List[Store]:
        if status not in {s.value for s in StoreStatus}:
            raise ValidationError("Unknown store status", meta={"status": status})
        return self.db.query(Store).filter(Store.status == status).order_by(Store.id).all()

    def get_owner_stores(self, owner_id: int) -> List[Store]:
        return self.db.query(Store).filter(Store.owner_id == owner_id).order_by(Store.id).all()

    # Store records

    def create_store(self, owner_id: int, plan_id: str, name: str, now: Optional[datetime] = None, **details: Any) -> Store:
        _validate_id(owner_id, "owner")
        if not name or not name.strip():
            raise ValidationError("Store name is required")
        unknown = set(details) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Unknown store fields", meta={"fields": sorted(unknown)})
        plan = plan_service.get_plan(self.db, plan_id)

        open_store = self.db.query(Store).filter(
            Store.owner_id == owner_id,
            Store.status.in_((StoreStatus.ACTIVE.value, StoreStatus.GRACE_PERIOD.value)),
        ).first()
        if open_store:
            raise StateError(
                "User already has an active store",
                code="store.already_open",
                meta={"store_id": open_store.id},
            )

        now = now or datetime.utcnow()
        store = Store(
            owner_id=owner_id,
            name=name.strip(),
            plan=plan,
            plan_id=plan.id,
            ads_used=0,
            max_ads=plan.max_ads,
            deleted_listings=[],
            is_active=True,
            status=StoreStatus.ACTIVE.value,
            created_at=now,
            expires_at=now + timedelta(days=plan.duration_days),
            **details,
        )
        self.db.add(store)
        self.db.commit()
        self.db.refresh(store)
        logger.info("Store %s created for owner %s on plan %s", store.id, owner_id, plan.id)
        return store

    def edit_store(self, store_id: int, updates: Dict[str, Any]) -> Store:
        """Owner edits of profile fields; lifecycle and quota fields are not editable."""
        forbidden = set(updates) - set(EDITABLE_FIELDS)
        if forbidden:
            raise ValidationError("These store fields cannot be edited", meta={"fields": sorted(forbidden)})
        if "name" in updates and (not updates["name"] or not str(updates["name"]).strip()):
            raise ValidationError("Store name is required")

        store = self.get_store(store_id)
        if store.status == StoreStatus.ARCHIVED.value:
            raise StateError("Archived stores cannot be edited", code="store.archived", meta={"store_id": store.id})
        for key, value in updates.items():
            setattr(store, key, value.strip() if key == "name" else value)
        self.db.commit()
        self.db.refresh(store)
        return store

    def delete_store(self, store_id: int, now: Optional[datetime] = None) -> Store:
        store = self.get_store(store_id, for_update=True)
        if store.status == StoreStatus.ARCHIVED.value or store.archived_at:
            raise StateError("Store is already deleted", code="store.archived", meta={"store_id": store.id})

        live = self.listings.count_live(store.id, excluding_ids=store.deleted_listings or [])
        if live:
            raise StateError(
                f"Store has {live} active listings. Please delete all listings first.",
                code="store.has_listings",
                meta={"store_id": store.id, "active_listings": live},
            )

        self.lifecycle.archive(store, now)
        self.db.commit()
        logger.info("Store %s archived by owner", store.id)
        notification_service.queue_store_deleted_fanout(store.id)
        return store

    # Lifecycle

    def update_store_status(self, store_id: int, now: Optional[datetime] = None) -> StatusTransition:
        """Apply the time-derived transition and fire any due expiration alert."""
        now = now or datetime.utcnow()
        store = self.get_store(store_id, for_update=True)
        transition = self.lifecycle.apply_status_transition(store, now)
        info = self.lifecycle.expiration_info(store, now)
        alert = self.scheduler.evaluate(store, info, now)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        # Dispatch only once the cooldown stamp is durable and the row lock is released
        if alert is not None:
            self.scheduler.deliver(alert)
        return transition

    def check_store_status(self, store_id: int, now: Optional[datetime] = None) -> str:
        return self.update_store_status(store_id, now).new_status

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Run ``update_store_status`` for every non-archived store."""
        now = now or datetime.utcnow()
        result = SweepResult()
        store_ids = [
            store_id
            for (store_id,) in self.db.query(Store.id)
            .filter(Store.status != StoreStatus.ARCHIVED.value)
            .order_by(Store.id)
            .all()
        ]
        for store_id in store_ids:
            result.checked += 1
            try:
                transition = self.update_store_status(store_id, now)
            except Exception:
                self.db.rollback()
                result.failed += 1
                logger.exception("Failed to update status of store %s", store_id)
                continue
            if transition.changed:
                result.transitioned += 1
        logger.info(
            "Status sweep: %s checked, %s transitioned, %s failed",
            result.checked, result.transitioned, result.failed,
        )
        return result

    def renew_store(self, store_id: int, plan_id: str, now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        plan = plan_service.get_plan(self.db, plan_id)
        store = self.get_store(store_id, for_update=True)
        self.lifecycle.apply_status_transition(store, now)
        self.lifecycle.renew(store, plan, now)
        self.db.commit()
        return store

    def can_store_be_reactivated(self, store_id: int, now: Optional[datetime] = None) -> bool:
        self.update_store_status(store_id, now)
        return self.lifecycle.can_reactivate(self.get_store(store_id))

    def reactivate_store(self, store_id: int, plan_id: str, now: Optional[datetime] = None) -> Store:
        now = now or datetime.utcnow()
        plan = plan_service.get_plan(self.db, plan_id)
        store = self.get_store(store_id, for_update=True)
        self.lifecycle.apply_status_transition(store, now)
        self.lifecycle.reactivate(store, plan, now)
        self.db.commit()
        return store

    def get_expiration_info(self, store_id: int, now: Optional[datetime] = None) -> Optional[ExpirationInfo]:
        """Read-only projection; ``None`` means the store's timestamps are unusable."""
        store = self.get_store(store_id)
        return self.lifecycle.expiration_info(store, now)

    def get_expired_store_actions(self, store_id: int, now: Optional[datetime] = None) -> ExpiredStoreActions:
        store = self.get_store(store_id)
        return self.lifecycle.expired_store_actions(store, now)

    # Quota

    def can_add_listing(self, store_id: int, now: Optional[datetime] = None) -> bool:
        try:
            self.update_store_status(store_id, now)
        except NotFoundError:
            logger.warning("Store %s not found for listing check", store_id)
            return False
        return can_add_listing(self.get_store(store_id))

    def add_listing_to_store(self, store_id: int, listing_id: int, now: Optional[datetime] = None) -> int:
        """Take a slot for an existing listing. A listing holds at most one slot."""
        _validate_id(listing_id, "listing")
        self.update_store_status(store_id, now)
        store = self.get_store(store_id)
        listing = self.listings.get(store.id, listing_id)
        if listing.deleted_at is not None:
            raise StateError(
                "Deleted listings cannot take a slot",
                code="listing.deleted",
                meta={"store_id": store.id, "listing_id": listing.id},
            )
        if listing.holds_slot:
            raise StateError(
                "Listing already counts against the store quota",
                code="listing.already_counted",
                meta={"store_id": store.id, "listing_id": listing.id},
            )

        # Flag and counter commit together; a rejected reservation rolls both back
        listing.holds_slot = True
        try:
            return self.quota.add_listing(store, listing.id)
        except Exception:
            self.db.rollback()
            raise

    def create_listing(
        self,
        store_id: int,
        title: str,
        price: Any,
        currency: str = "AZN",
        price_by_agreement: bool = False,
        now: Optional[datetime] = None,
    ) -> Listing:
        """Create a listing in ``store_id`` and take one slot for it atomically."""
        if not title or not title.strip():
            raise ValidationError("Listing title is required")
        price = to_decimal(price)
        if price < 0:
            raise ValidationError("Listing price cannot be negative", meta={"price": str(price)})

        self.update_store_status(store_id, now)
        store = self.get_store(store_id)
        listing = self.listings.add(
            Listing(
                store_id=store.id,
                title=title.strip(),
                price=price,
                currency=currency,
                price_by_agreement=price_by_agreement,
                holds_slot=True,
            )
        )
        # The slot reservation commits the listing; a rejected reservation rolls it back
        try:
            self.quota.add_listing(store, listing.id)
        except Exception:
            self.db.rollback()
            raise
        return listing

    def remove_listing_from_store(self, store_id: int, listing_id: int) -> int:
        """Give back the slot held by ``listing_id``; a listing without one changes nothing."""
        _validate_id(listing_id, "listing")
        store = self.get_store(store_id)
        listing = self.listings.get(store.id, listing_id)
        if not listing.holds_slot:
            logger.warning("Listing %s holds no slot in store %s", listing.id, store.id)
            return as_counter(store.ads_used)
        listing.holds_slot = False
        return self.quota.remove_listing(store, listing.id)

    def delete_listing_early(self, store_id: int, listing_id: int, now: Optional[datetime] = None) -> bool:
        store = self.get_store(store_id, for_update=True)
        listing = self.db.query(Listing).filter(Listing.id == listing_id, Listing.store_id == store.id).one_or_none()
        if listing is not None and listing.deleted_at is None:
            listing.deleted_at = now or datetime.utcnow()
        recorded = self.quota.delete_listing_early(store, listing_id)
        self.db.commit()
        return recorded

    def get_store_usage(self, store_id: int) -> StoreUsage:
        return self.quota.get_store_usage(self.get_store(store_id))

    # Discounts

    def apply_discount_to_product(self, store_id: int, listing_id: int, percentage: Any) -> Listing:
        _validate_id(listing_id, "listing")
        validate_percentage(percentage)
        store = self.get_store(store_id)
        listing = self.listings.get(store.id, listing_id)
        return self.discounts.apply_listing_discount(listing, percentage)

    def remove_discount_from_product(self, store_id: int, listing_id: int) -> Listing:
        _validate_id(listing_id, "listing")
        store = self.get_store(store_id)
        listing = self.listings.get(store.id, listing_id)
        self.discounts.remove_listing_discount(listing)
        return listing

    def apply_store_wide_discount(self, store_id: int, percentage: Any, exclude_listing_ids: Iterable[int] = ()) -> BatchResult:
        validate_percentage(percentage)
        store = self.get_store(store_id)
        return self.discounts.apply_store_wide_discount(store, percentage, exclude_listing_ids)

    def remove_store_wide_discount(self, store_id: int) -> BatchResult:
        store = self.get_store(store_id)
        return self.discounts.remove_store_wide_discount(store)

    def get_store_discounts(self, store_id: int) -> List[DiscountSummary]:
        store = self.get_store(store_id)
        return self.discounts.get_store_discounts(store)

    # Followers

    def follow_store(self, store_id: int, user_id: int) -> bool:
        _validate_id(user_id, "user")
        store = self.get_store(store_id)
        return self.followers.follow(store.id, user_id)

    def unfollow_store(self, store_id: int, user_id: int) -> bool:
        _validate_id(user_id, "user")
        store = self.get_store(store_id)
        return self.followers.unfollow(store.id, user_id)

    def is_following_store(self, store_id: int, user_id: int) -> bool:
        return self.followers.is_following(store_id, user_id)

    def get_followed_stores(self, user_id: int) -> List[Store]:
        store_ids = self.followers.followed_store_ids(user_id)
        if not store_ids:
            return []
        return self.db.query(Store).filter(Store.id.in_(store_ids)).order_by(Store.id).all()
