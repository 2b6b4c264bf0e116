from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from main import app
from core.db import Base, engine, SessionLocal, get_db
from models.listing import Listing
from models.store import Store, StoreStatus
from services import notifications as notification_service
from services.plans import seed_default_plans

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def db():
    """Fresh in-memory database with the default plan catalog."""
    Base.metadata.create_all(bind=engine)
    db_session = SessionLocal()
    seed_default_plans(db_session)
    yield db_session
    db_session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def dispatched(monkeypatch):
    """Capture everything that would be queued to Celery."""
    sent = {"notifications": [], "fanout": [], "store_deleted": []}

    def _fake_send(user_id, store_id, kind, message, listing_id=None):
        sent["notifications"].append(
            {"user_id": user_id, "store_id": store_id, "kind": kind, "message": message, "listing_id": listing_id}
        )

    def _fake_fanout(store_id, listing_id):
        sent["fanout"].append((store_id, listing_id))

    def _fake_store_deleted(store_id):
        sent["store_deleted"].append(store_id)

    monkeypatch.setattr(notification_service, "send_notification", _fake_send)
    monkeypatch.setattr(notification_service, "queue_follower_fanout", _fake_fanout)
    monkeypatch.setattr(notification_service, "queue_store_deleted_fanout", _fake_store_deleted)
    return sent


@pytest.fixture()
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_store(db):
    """Insert a store row with explicit lifecycle fields."""
    counter = {"owner": 100}

    def _make(**overrides):
        counter["owner"] += 1
        values = {
            "owner_id": counter["owner"],
            "name": "Test Store",
            "plan_id": "basic",
            "ads_used": 0,
            "max_ads": 3,
            "deleted_listings": [],
            "is_active": True,
            "status": StoreStatus.ACTIVE.value,
            "created_at": NOW - timedelta(days=20),
            "expires_at": NOW + timedelta(days=10),
        }
        values.update(overrides)
        store = Store(**values)
        db.add(store)
        db.commit()
        db.refresh(store)
        return store

    return _make


@pytest.fixture()
def make_listing(db):
    def _make(store, **overrides):
        values = {
            "store_id": store.id,
            "title": "Listing",
            "price": 100,
            "currency": "AZN",
            "price_by_agreement": False,
            "has_discount": False,
        }
        values.update(overrides)
        listing = Listing(**values)
        db.add(listing)
        db.commit()
        db.refresh(listing)
        return listing

    return _make
