from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from schemas.notification import NotificationOut
from services.feed import NotificationFeed

router = APIRouter(prefix="/users/{user_id}/notifications", tags=["notifications"])


@router.get("/", response_model=List[NotificationOut])
def list_notifications(user_id: int, unread_only: bool = False, db: Session = Depends(get_db)):
    return NotificationFeed(db).for_user(user_id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(user_id: int, notification_id: int, db: Session = Depends(get_db)):
    return NotificationFeed(db).mark_read(user_id, notification_id)
