from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from core.errors import NotFoundError
from models.listing import Listing


class ListingRepository:
    """Listing queries and writes scoped to a store."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, store_id: int, listing_id: int) -> Listing:
        listing = self.db.query(Listing).filter(Listing.id == listing_id, Listing.store_id == store_id).one_or_none()
        if not listing:
            raise NotFoundError(
                "Listing not found in store",
                code="listing.not_found",
                meta={"store_id": store_id, "listing_id": listing_id},
            )
        return listing

    def for_store(self, store_id: int, include_deleted: bool = False) -> List[Listing]:
        qs = self.db.query(Listing).filter(Listing.store_id == store_id)
        if not include_deleted:
            qs = qs.filter(Listing.deleted_at.is_(None))
        return qs.order_by(Listing.id).all()

    def discountable(self, store_id: int, exclude_ids: Iterable[int] = ()) -> List[Listing]:
        qs = self.db.query(Listing).filter(
            Listing.store_id == store_id,
            Listing.deleted_at.is_(None),
            Listing.price_by_agreement.is_(False),
        )
        excluded = list(exclude_ids)
        if excluded:
            qs = qs.filter(Listing.id.notin_(excluded))
        return qs.order_by(Listing.id).all()

    def discounted(self, store_id: int) -> List[Listing]:
        return (
            self.db.query(Listing)
            .filter(
                Listing.store_id == store_id,
                Listing.has_discount.is_(True),
                Listing.deleted_at.is_(None),
            )
            .order_by(Listing.id)
            .all()
        )

    def count_live(self, store_id: int, excluding_ids: Optional[Iterable[int]] = None) -> int:
        qs = self.db.query(Listing).filter(Listing.store_id == store_id, Listing.deleted_at.is_(None))
        excluded = list(excluding_ids or [])
        if excluded:
            qs = qs.filter(Listing.id.notin_(excluded))
        return qs.count()

    def add(self, listing: Listing) -> Listing:
        self.db.add(listing)
        self.db.flush()
        return listing

    def commit(self) -> None:
        self.db.commit()
