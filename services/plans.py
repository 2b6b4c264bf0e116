from typing import List

from sqlalchemy.orm import Session

from core.errors import NotFoundError
from models.store import StorePlan

DEFAULT_PLANS = [
    {"id": "basic", "name": "Basic", "price": 100, "max_ads": 200, "duration_days": 30},
    {"id": "premium", "name": "Premium", "price": 150, "max_ads": 350, "duration_days": 30},
    {"id": "business", "name": "Business", "price": 200, "max_ads": 500, "duration_days": 30},
]


def seed_default_plans(db: Session) -> int:
    """Insert the default plan catalog; existing plans are left untouched."""
    existing = {plan_id for (plan_id,) in db.query(StorePlan.id).all()}
    created = 0
    for data in DEFAULT_PLANS:
        if data["id"] in existing:
            continue
        db.add(StorePlan(**data))
        created += 1
    db.commit()
    return created


def list_plans(db: Session) -> List[StorePlan]:
    return db.query(StorePlan).order_by(StorePlan.price).all()


def get_plan(db: Session, plan_id: str) -> StorePlan:
    plan = db.get(StorePlan, plan_id) if plan_id else None
    if not plan:
        raise NotFoundError("Plan not found", code="plan.not_found", meta={"plan_id": plan_id})
    return plan
