from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    user_id: int
    store_id: Optional[int] = None
    listing_id: Optional[int] = None
    kind: str
    message: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
