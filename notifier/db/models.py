"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class UserRole(str, Enum):
    """Marketplace user roles."""

    ADMIN = "ADMIN"
    RETAILER = "RETAILER"
    CONSUMER = "CONSUMER"


class SubscriptionStatus(str, Enum):
    """Lifecycle of a user's subscription to a plan."""

    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PENDING = "PENDING"


class NotificationType(str, Enum):
    """Kinds of in-app notifications."""

    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_PRICE_CHANGED = "PRODUCT_PRICE_CHANGED"
    PRODUCT_STOCK_CHANGED = "PRODUCT_STOCK_CHANGED"
    PROMOTION_CREATED = "PROMOTION_CREATED"
    PROMOTION_ENDING_SOON = "PROMOTION_ENDING_SOON"
    PROMOTION_ENDED = "PROMOTION_ENDED"
    PROMOTION_NEARBY = "PROMOTION_NEARBY"
    STORE_VERIFIED = "STORE_VERIFIED"
    STORE_UNDER_REVIEW = "STORE_UNDER_REVIEW"
    STORE_CREATED = "STORE_CREATED"
    SUBSCRIPTION_AVAILABLE = "SUBSCRIPTION_AVAILABLE"
    SUBSCRIPTION_ENDING_SOON = "SUBSCRIPTION_ENDING_SOON"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    CONSUMER_WELCOME = "CONSUMER_WELCOME"
    GPS_REMINDER = "GPS_REMINDER"
    QUESTIONABLE_PRICING_PRODUCT = "QUESTIONABLE_PRICING_PRODUCT"
    QUESTIONABLE_PRICING_PROMOTION = "QUESTIONABLE_PRICING_PROMOTION"


class User(Base):
    """Marketplace account (admin, retailer or consumer)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    role: Mapped[str] = mapped_column(
        String(16), default=UserRole.CONSUMER.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    stores: Mapped[list["Store"]] = relationship("Store", back_populates="owner")


class Store(Base):
    """Retailer store."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    owner: Mapped["User"] = relationship("User", back_populates="stores")
    products: Mapped[list["Product"]] = relationship("Product", back_populates="store")


class Product(Base):
    """Product listed in a store."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    store_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stores.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    store: Mapped["Store"] = relationship("Store", back_populates="products")
    promotions: Mapped[list["Promotion"]] = relationship(
        "Promotion", back_populates="product"
    )


class Promotion(Base):
    """Time-limited discount on a product.

    Once ``active`` is false the scheduler never looks at the row again.
    """

    __tablename__ = "promotions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)  # percent
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    product: Mapped[Optional["Product"]] = relationship(
        "Product", back_populates="promotions"
    )

    __table_args__ = (Index("ix_promotions_active_ends_at", "active", "ends_at"),)


class SubscriptionPlan(Base):
    """Retailer subscription plan."""

    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class UserSubscription(Base):
    """A user's subscription to a plan.

    ACTIVE -> EXPIRED is applied once by the expired-subscription scan.
    """

    __tablename__ = "user_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    plan_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("subscription_plans.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(16), default=SubscriptionStatus.PENDING.value, nullable=False
    )
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    plan: Mapped[Optional["SubscriptionPlan"]] = relationship("SubscriptionPlan")

    __table_args__ = (
        Index("ix_user_subscriptions_status_ends_at", "status", "ends_at"),
    )


class ProductBookmark(Base):
    """A user following a product."""

    __tablename__ = "product_bookmarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_product_bookmark_user_product"),
    )


class StoreBookmark(Base):
    """A user following a store."""

    __tablename__ = "store_bookmarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    store_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "store_id", name="uq_store_bookmark_user_store"),
    )


class Notification(Base):
    """In-app notification row.

    No unique constraint on (subject, type): deduplication is done by the
    scan routines through the dedup gate.
    """

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(48), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Optional references
    promotion_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True
    )
    store_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("stores.id", ondelete="SET NULL"), nullable=True
    )
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )

    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_notifications_user_type_created", "user_id", "type", "created_at"),
        Index("ix_notifications_promotion_type_created", "promotion_id", "type", "created_at"),
        Index("ix_notifications_user_read", "user_id", "read"),
    )
