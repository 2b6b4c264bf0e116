"""
Listing discounts.

The pre-discount price is captured once in ``original_price`` and every
later discount is computed from it, so discounts never compound.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List

from core.errors import ValidationError
from models.listing import Listing
from models.store import Store
from services.listings import ListingRepository

logger = logging.getLogger(__name__)

MIN_PERCENTAGE = 1
MAX_PERCENTAGE = 99


@dataclass
class BatchResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class DiscountSummary:
    listing_id: int
    original_price: Decimal
    discounted_price: Decimal
    discount_percentage: int


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError("Listing price is not a number", meta={"price": repr(value)})
    return Decimal(str(value))


def round_price(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def validate_percentage(percentage: Any) -> int:
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise ValidationError(
            "Discount percentage must be a whole number",
            meta={"discount_percentage": repr(percentage)},
        )
    if not MIN_PERCENTAGE <= percentage <= MAX_PERCENTAGE:
        raise ValidationError(
            f"Discount percentage must be between {MIN_PERCENTAGE} and {MAX_PERCENTAGE}",
            meta={"discount_percentage": percentage},
        )
    return percentage


def discounted_price(base_price: Any, percentage: int) -> Decimal:
    base = to_decimal(base_price)
    amount = base * percentage / Decimal(100)
    return round_price(max(Decimal(0), base - amount))


class DiscountEngine:
    def __init__(self, listings: ListingRepository):
        self.listings = listings

    def _apply(self, listing: Listing, percentage: int) -> None:
        if listing.price_by_agreement:
            raise ValidationError(
                "Cannot apply discount to price by agreement listings",
                code="listing.price_by_agreement",
                meta={"listing_id": listing.id},
            )
        base = to_decimal(listing.original_price if listing.original_price is not None else listing.price)
        new_price = discounted_price(base, percentage)
        listing.original_price = base
        listing.price = new_price
        listing.discount_percentage = percentage
        listing.has_discount = True

    @staticmethod
    def _remove(listing: Listing) -> bool:
        if not listing.has_discount:
            return False
        if listing.original_price is not None:
            listing.price = listing.original_price
        listing.original_price = None
        listing.discount_percentage = None
        listing.has_discount = False
        return True

    def apply_listing_discount(self, listing: Listing, percentage: Any) -> Listing:
        percentage = validate_percentage(percentage)
        self._apply(listing, percentage)
        self.listings.commit()
        logger.info(
            "Applied %s%% discount to listing %s: %s -> %s",
            percentage, listing.id, listing.original_price, listing.price,
        )
        return listing

    def remove_listing_discount(self, listing: Listing) -> bool:
        if not self._remove(listing):
            logger.warning("Listing %s has no discount to remove", listing.id)
            return False
        self.listings.commit()
        logger.info("Removed discount from listing %s", listing.id)
        return True

    def apply_store_wide_discount(self, store: Store, percentage: Any, exclude_ids: Iterable[int] = ()) -> BatchResult:
        percentage = validate_percentage(percentage)
        if isinstance(exclude_ids, (str, bytes)):
            raise ValidationError("Exclude list must be a list of listing IDs")
        try:
            excluded = [int(listing_id) for listing_id in exclude_ids]
        except (TypeError, ValueError):
            raise ValidationError("Exclude list must be a list of listing IDs")

        result = BatchResult()
        candidates = self.listings.discountable(store.id, excluded)
        if not candidates:
            logger.warning("No applicable listings for store-wide discount in store %s", store.id)
            return result

        for listing in candidates:
            result.attempted += 1
            try:
                self._apply(listing, percentage)
                result.succeeded += 1
            except Exception:
                logger.exception("Failed to discount listing %s in store %s", listing.id, store.id)
                result.failed += 1
                result.failed_ids.append(listing.id)
        self.listings.commit()

        logger.info(
            "Store-wide %s%% discount on store %s: %s succeeded, %s failed of %s",
            percentage, store.id, result.succeeded, result.failed, result.attempted,
        )
        return result

    def remove_store_wide_discount(self, store: Store) -> BatchResult:
        result = BatchResult()
        candidates = self.listings.discounted(store.id)
        if not candidates:
            logger.warning("No discounted listings to restore in store %s", store.id)
            return result

        for listing in candidates:
            result.attempted += 1
            try:
                self._remove(listing)
                result.succeeded += 1
            except Exception:
                logger.exception("Failed to remove discount from listing %s in store %s", listing.id, store.id)
                result.failed += 1
                result.failed_ids.append(listing.id)
        self.listings.commit()

        logger.info(
            "Store-wide discount removed on store %s: %s succeeded, %s failed of %s",
            store.id, result.succeeded, result.failed, result.attempted,
        )
        return result

    def get_store_discounts(self, store: Store) -> List[DiscountSummary]:
        return [
            DiscountSummary(
                listing_id=listing.id,
                original_price=to_decimal(listing.original_price),
                discounted_price=to_decimal(listing.price),
                discount_percentage=listing.discount_percentage,
            )
            for listing in self.listings.discounted(store.id)
            if listing.original_price is not None and listing.discount_percentage
        ]
