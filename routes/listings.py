from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends

from routes.stores import get_store_service
from services.stores import StoreService
from schemas.listing import (
    BatchResultOut,
    DiscountOut,
    DiscountRequest,
    ListingCreate,
    ListingOut,
    StoreWideDiscountRequest,
    UsageChangeOut,
)

router = APIRouter(prefix="/stores/{store_id}/listings", tags=["listings"])


@router.get("/", response_model=List[ListingOut])
def list_listings(store_id: int, service: StoreService = Depends(get_store_service)):
    store = service.get_store(store_id)
    return service.listings.for_store(store.id)


@router.post("/", response_model=ListingOut, status_code=201)
def create_listing(store_id: int, data: ListingCreate, service: StoreService = Depends(get_store_service)):
    return service.create_listing(
        store_id,
        title=data.title,
        price=data.price,
        currency=data.currency,
        price_by_agreement=data.price_by_agreement,
    )


@router.get("/discounts", response_model=List[DiscountOut])
def get_store_discounts(store_id: int, service: StoreService = Depends(get_store_service)):
    return [asdict(summary) for summary in service.get_store_discounts(store_id)]


@router.post("/discounts", response_model=BatchResultOut)
def apply_store_wide_discount(store_id: int, data: StoreWideDiscountRequest, service: StoreService = Depends(get_store_service)):
    result = service.apply_store_wide_discount(store_id, data.discount_percentage, data.exclude_listing_ids)
    return asdict(result)


@router.delete("/discounts", response_model=BatchResultOut)
def remove_store_wide_discount(store_id: int, service: StoreService = Depends(get_store_service)):
    return asdict(service.remove_store_wide_discount(store_id))


@router.delete("/{listing_id}", response_model=UsageChangeOut)
def delete_listing_early(store_id: int, listing_id: int, service: StoreService = Depends(get_store_service)):
    recorded = service.delete_listing_early(store_id, listing_id)
    return {"store_id": store_id, "listing_id": listing_id, "recorded": recorded}


@router.post("/{listing_id}/release", response_model=UsageChangeOut)
def release_listing_slot(store_id: int, listing_id: int, service: StoreService = Depends(get_store_service)):
    ads_used = service.remove_listing_from_store(store_id, listing_id)
    return {"store_id": store_id, "listing_id": listing_id, "ads_used": ads_used}


@router.put("/{listing_id}/discount", response_model=ListingOut)
def apply_discount_to_product(store_id: int, listing_id: int, data: DiscountRequest, service: StoreService = Depends(get_store_service)):
    return service.apply_discount_to_product(store_id, listing_id, data.discount_percentage)


@router.delete("/{listing_id}/discount", response_model=ListingOut)
def remove_discount_from_product(store_id: int, listing_id: int, service: StoreService = Depends(get_store_service)):
    return service.remove_discount_from_product(store_id, listing_id)
