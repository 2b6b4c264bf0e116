from decimal import Decimal

import pytest

from core.errors import NotFoundError, ValidationError
from services.discounts import DiscountEngine, discounted_price, round_price, validate_percentage
from services.listings import ListingRepository
from services.stores import StoreService


@pytest.fixture
def discounts(db):
    return DiscountEngine(ListingRepository(db))


class TestDiscountMath:
    def test_discounted_price(self):
        assert discounted_price(100, 20) == Decimal("80")

    def test_rounds_half_up(self):
        assert discounted_price(15, 50) == Decimal("8")
        assert round_price(Decimal("2.5")) == Decimal("3")
        assert round_price(Decimal("2.49")) == Decimal("2")

    @pytest.mark.parametrize("value", [0, 100, -5, 12.5, "20", None, True])
    def test_invalid_percentage(self, value):
        with pytest.raises(ValidationError):
            validate_percentage(value)

    @pytest.mark.parametrize("value", [1, 50, 99])
    def test_valid_percentage(self, value):
        assert validate_percentage(value) == value


class TestListingDiscount:
    def test_discounts_never_compound(self, db, make_store, make_listing, discounts):
        listing = make_listing(make_store(), price=100)

        discounts.apply_listing_discount(listing, 20)
        db.refresh(listing)
        assert listing.original_price == Decimal("100")
        assert listing.price == Decimal("80")

        discounts.apply_listing_discount(listing, 50)
        db.refresh(listing)
        assert listing.original_price == Decimal("100")
        assert listing.price == Decimal("50")
        assert listing.discount_percentage == 50

    def test_remove_restores_original(self, db, make_store, make_listing, discounts):
        listing = make_listing(make_store(), price=240)
        discounts.apply_listing_discount(listing, 25)

        assert discounts.remove_listing_discount(listing) is True

        db.refresh(listing)
        assert listing.price == Decimal("240")
        assert listing.original_price is None
        assert listing.discount_percentage is None
        assert listing.has_discount is False

    def test_remove_without_discount(self, make_store, make_listing, discounts):
        listing = make_listing(make_store())
        assert discounts.remove_listing_discount(listing) is False

    def test_price_by_agreement_rejected(self, make_store, make_listing, discounts):
        listing = make_listing(make_store(), price_by_agreement=True)

        with pytest.raises(ValidationError) as exc:
            discounts.apply_listing_discount(listing, 10)

        assert exc.value.code == "listing.price_by_agreement"
        assert listing.has_discount is False

    def test_invalid_percentage_leaves_listing_untouched(self, make_store, make_listing, discounts):
        listing = make_listing(make_store(), price=100)
        with pytest.raises(ValidationError):
            discounts.apply_listing_discount(listing, 120)
        assert listing.price == Decimal("100")


class TestStoreWideDiscount:
    def test_skips_excluded_and_price_by_agreement(self, db, make_store, make_listing, discounts):
        store = make_store()
        first = make_listing(store, price=100)
        excluded = make_listing(store, price=200)
        agreement = make_listing(store, price=300, price_by_agreement=True)

        result = discounts.apply_store_wide_discount(store, 10, [excluded.id])

        assert (result.attempted, result.succeeded, result.failed) == (1, 1, 0)
        for listing in (first, excluded, agreement):
            db.refresh(listing)
        assert first.price == Decimal("90")
        assert excluded.has_discount is False
        assert agreement.has_discount is False

    def test_failure_of_one_listing_does_not_stop_batch(self, db, make_store, make_listing, discounts, monkeypatch):
        store = make_store()
        good = make_listing(store, price=100)
        bad = make_listing(store, price=100)
        original_apply = discounts._apply

        def _flaky_apply(listing, percentage):
            if listing.id == bad.id:
                raise RuntimeError("corrupt row")
            original_apply(listing, percentage)

        monkeypatch.setattr(discounts, "_apply", _flaky_apply)

        result = discounts.apply_store_wide_discount(store, 30)

        assert result.attempted == 2
        assert result.succeeded == 1
        assert result.failed_ids == [bad.id]
        db.refresh(good)
        assert good.price == Decimal("70")

    def test_empty_store(self, make_store, discounts):
        result = discounts.apply_store_wide_discount(make_store(), 10)
        assert result.attempted == 0

    def test_exclude_list_must_be_ids(self, make_store, discounts):
        with pytest.raises(ValidationError):
            discounts.apply_store_wide_discount(make_store(), 10, "1,2")
        with pytest.raises(ValidationError):
            discounts.apply_store_wide_discount(make_store(), 10, [None])

    def test_remove_store_wide(self, db, make_store, make_listing, discounts):
        store = make_store()
        listings = [make_listing(store, price=price) for price in (50, 75)]
        discounts.apply_store_wide_discount(store, 20)

        result = discounts.remove_store_wide_discount(store)

        assert result.succeeded == 2
        for listing in listings:
            db.refresh(listing)
        assert [listing.price for listing in listings] == [Decimal("50"), Decimal("75")]

    def test_get_store_discounts(self, make_store, make_listing, discounts):
        store = make_store()
        discounted = make_listing(store, price=100)
        make_listing(store, price=100)
        discounts.apply_listing_discount(discounted, 15)

        summaries = discounts.get_store_discounts(store)

        assert len(summaries) == 1
        assert summaries[0].listing_id == discounted.id
        assert summaries[0].original_price == Decimal("100")
        assert summaries[0].discounted_price == Decimal("85")
        assert summaries[0].discount_percentage == 15


class TestServiceDiscounts:
    def test_listing_from_another_store(self, db, make_store, make_listing):
        other = make_listing(make_store())
        store = make_store()

        with pytest.raises(NotFoundError) as exc:
            StoreService(db).apply_discount_to_product(store.id, other.id, 10)
        assert exc.value.code == "listing.not_found"

    def test_apply_and_remove_through_service(self, db, make_store, make_listing):
        store = make_store()
        listing = make_listing(store, price=80)
        service = StoreService(db)

        service.apply_discount_to_product(store.id, listing.id, 25)
        assert service.remove_discount_from_product(store.id, listing.id).price == Decimal("80")
