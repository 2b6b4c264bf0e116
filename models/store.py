import enum
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Text, JSON, Integer, Numeric, ForeignKey, Table, Column
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class StoreStatus(str, enum.Enum):
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    DEACTIVATED = "deactivated"
    ARCHIVED = "archived"


# Followers are a set: the composite primary key rejects duplicates
store_followers = Table(
    "store_followers",
    Base.metadata,
    Column("store_id", Integer, ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, primary_key=True, index=True),
    Column("followed_at", DateTime, default=datetime.utcnow),
)


class StorePlan(Base):
    __tablename__ = "store_plans"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)  # basic, premium, business
    name: Mapped[str] = mapped_column(String(100))
    price: Mapped[float] = mapped_column(Numeric(12, 2))
    max_ads: Mapped[int] = mapped_column(Integer)
    duration_days: Mapped[int] = mapped_column(Integer)


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    owner_id: Mapped[int] = mapped_column(index=True)
    name: Mapped[str] = mapped_column(String(150), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Contact & business info
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Subscription & quota
    plan_id: Mapped[str] = mapped_column(ForeignKey("store_plans.id", ondelete="RESTRICT"), index=True)
    ads_used: Mapped[int] = mapped_column(Integer, default=0)
    max_ads: Mapped[int] = mapped_column(Integer, default=0)
    deleted_listings: Mapped[list] = mapped_column(JSON, default=list)  # append-only audit ledger

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(20), default=StoreStatus.ACTIVE.value, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    grace_period_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_notification_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Ratings
    rating_sum: Mapped[int] = mapped_column(Integer, default=0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = relationship("StorePlan")

    @property
    def rating(self) -> float:
        if not self.rating_count:
            return 0.0
        return round(self.rating_sum / self.rating_count, 2)
