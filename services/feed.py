import os
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from sqlalchemy.orm import Session

from core.errors import NotFoundError
from models.notification import Notification


# Jinja2 environment for notification templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def render_message(kind: str, context: Dict[str, Any]) -> str:
    """Render ``templates/notifications/<kind>.txt`` with ``context``."""
    template = _templates_env.get_template(f"notifications/{kind}.txt")
    return template.render(**context).strip()


class NotificationFeed:
    """Append-only per-user notification feed."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        user_id: int,
        store_id: Optional[int],
        kind: str,
        message: str,
        listing_id: Optional[int] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            store_id=store_id,
            listing_id=listing_id,
            kind=kind,
            message=message,
            is_read=False,
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def for_user(self, user_id: int, unread_only: bool = False) -> List[Notification]:
        qs = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            qs = qs.filter(Notification.is_read.is_(False))
        return qs.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).one_or_none()
        if not notification:
            raise NotFoundError("Notification not found", meta={"notification_id": notification_id})
        notification.is_read = True
        self.db.commit()
        return notification
