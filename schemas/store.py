from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class PlanOut(BaseModel):
    id: str
    name: str
    price: float
    max_ads: int
    duration_days: int

    class Config:
        from_attributes = True


class StoreCreate(BaseModel):
    owner_id: int
    plan_id: str
    name: str
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    whatsapp: Optional[str] = None
    address: Optional[str] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    whatsapp: Optional[str] = None
    address: Optional[str] = None


class StoreOut(BaseModel):
    id: int
    owner_id: int
    name: str
    description: Optional[str] = None
    plan_id: str
    ads_used: int
    max_ads: int
    deleted_listings: List[int] = []
    is_active: bool
    status: str
    created_at: datetime
    expires_at: datetime
    grace_period_ends_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    rating: float = 0.0
    rating_count: int = 0

    class Config:
        from_attributes = True


class StoreStatusOut(BaseModel):
    store_id: int
    status: str


class StatusTransitionOut(BaseModel):
    store_id: int
    old_status: str
    new_status: str
    changed: bool


class RenewRequest(BaseModel):
    plan_id: str


class StoreUsageOut(BaseModel):
    used: int
    max: int
    remaining: int
    deleted: int


class ExpirationInfoOut(BaseModel):
    available: bool = True
    status: Optional[str] = None
    days_until_expiration: Optional[int] = None
    days_in_grace_period: Optional[int] = None
    days_since_deactivation: Optional[int] = None
    can_reactivate: Optional[bool] = None
    next_action: Optional[str] = None
    next_action_date: Optional[date] = None


class ExpiredStoreActionsOut(BaseModel):
    can_renew: bool
    can_reactivate: bool
    can_archive: bool
    recommended_action: str


class FollowOut(BaseModel):
    store_id: int
    user_id: int
    following: bool
    changed: bool
