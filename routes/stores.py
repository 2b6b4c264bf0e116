from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from services import plans as plan_service
from services.stores import StoreService
from schemas.store import (
    ExpirationInfoOut,
    ExpiredStoreActionsOut,
    FollowOut,
    PlanOut,
    RenewRequest,
    StatusTransitionOut,
    StoreCreate,
    StoreOut,
    StoreStatusOut,
    StoreUpdate,
    StoreUsageOut,
)

router = APIRouter(prefix="/stores", tags=["stores"])


def get_store_service(db: Session = Depends(get_db)) -> StoreService:
    return StoreService(db)


@router.get("/plans", response_model=List[PlanOut])
def list_plans(db: Session = Depends(get_db)):
    return plan_service.list_plans(db)


@router.post("/", response_model=StoreOut, status_code=201)
def create_store(data: StoreCreate, service: StoreService = Depends(get_store_service)):
    details = data.model_dump(exclude={"owner_id", "plan_id", "name"}, exclude_none=True)
    return service.create_store(data.owner_id, data.plan_id, data.name, **details)


@router.get("/by-status/{status}", response_model=List[StoreOut])
def stores_by_status(status: str, service: StoreService = Depends(get_store_service)):
    return service.get_stores_by_status(status)


@router.get("/{store_id}", response_model=StoreOut)
def get_store(store_id: int, service: StoreService = Depends(get_store_service)):
    service.update_store_status(store_id)
    return service.get_store(store_id)


@router.patch("/{store_id}", response_model=StoreOut)
def edit_store(store_id: int, data: StoreUpdate, service: StoreService = Depends(get_store_service)):
    return service.edit_store(store_id, data.model_dump(exclude_unset=True))


@router.delete("/{store_id}", status_code=204)
def delete_store(store_id: int, service: StoreService = Depends(get_store_service)):
    service.delete_store(store_id)
    return None


@router.get("/{store_id}/status", response_model=StoreStatusOut)
def check_store_status(store_id: int, service: StoreService = Depends(get_store_service)):
    return {"store_id": store_id, "status": service.check_store_status(store_id)}


@router.post("/{store_id}/status", response_model=StatusTransitionOut)
def update_store_status(store_id: int, service: StoreService = Depends(get_store_service)):
    transition = service.update_store_status(store_id)
    return {
        "store_id": store_id,
        "old_status": transition.old_status,
        "new_status": transition.new_status,
        "changed": transition.changed,
    }


@router.get("/{store_id}/expiration", response_model=ExpirationInfoOut)
def get_expiration_info(store_id: int, service: StoreService = Depends(get_store_service)):
    info = service.get_expiration_info(store_id)
    if info is None:
        return {"available": False}
    return asdict(info)


@router.get("/{store_id}/actions", response_model=ExpiredStoreActionsOut)
def get_expired_store_actions(store_id: int, service: StoreService = Depends(get_store_service)):
    return asdict(service.get_expired_store_actions(store_id))


@router.post("/{store_id}/renew", response_model=StoreOut)
def renew_store(store_id: int, data: RenewRequest, service: StoreService = Depends(get_store_service)):
    return service.renew_store(store_id, data.plan_id)


@router.post("/{store_id}/reactivate", response_model=StoreOut)
def reactivate_store(store_id: int, data: RenewRequest, service: StoreService = Depends(get_store_service)):
    return service.reactivate_store(store_id, data.plan_id)


@router.get("/{store_id}/usage", response_model=StoreUsageOut)
def get_store_usage(store_id: int, service: StoreService = Depends(get_store_service)):
    return asdict(service.get_store_usage(store_id))


@router.put("/{store_id}/followers/{user_id}", response_model=FollowOut)
def follow_store(store_id: int, user_id: int, service: StoreService = Depends(get_store_service)):
    changed = service.follow_store(store_id, user_id)
    return {"store_id": store_id, "user_id": user_id, "following": True, "changed": changed}


@router.delete("/{store_id}/followers/{user_id}", response_model=FollowOut)
def unfollow_store(store_id: int, user_id: int, service: StoreService = Depends(get_store_service)):
    changed = service.unfollow_store(store_id, user_id)
    return {"store_id": store_id, "user_id": user_id, "following": False, "changed": changed}
