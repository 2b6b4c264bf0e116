from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ListingCreate(BaseModel):
    title: str
    price: float
    currency: str = "AZN"
    price_by_agreement: bool = False


class ListingOut(BaseModel):
    id: int
    store_id: Optional[int] = None
    title: str
    price: float
    currency: str
    price_by_agreement: bool
    holds_slot: bool = False
    original_price: Optional[float] = None
    discount_percentage: Optional[int] = None
    has_discount: bool
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DiscountRequest(BaseModel):
    discount_percentage: int


class StoreWideDiscountRequest(BaseModel):
    discount_percentage: int
    exclude_listing_ids: List[int] = []


class BatchResultOut(BaseModel):
    attempted: int
    succeeded: int
    failed: int
    failed_ids: List[int] = []


class DiscountOut(BaseModel):
    listing_id: int
    original_price: float
    discounted_price: float
    discount_percentage: int


class UsageChangeOut(BaseModel):
    store_id: int
    listing_id: int
    ads_used: Optional[int] = None
    recorded: Optional[bool] = None
