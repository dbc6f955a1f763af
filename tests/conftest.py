"""Shared fixtures: an in-memory SQLite database and seed helpers."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from notifier.db.models import (
    Base,
    Product,
    Promotion,
    Store,
    SubscriptionStatus,
    User,
    UserRole,
    UserSubscription,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime.utcnow()


class Seeder:
    """Creates marketplace rows with sensible defaults."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._counter = 0

    async def _add(self, obj):
        async with self.session_factory() as db:
            db.add(obj)
            await db.commit()
            await db.refresh(obj)
        return obj

    async def user(self, role: UserRole = UserRole.CONSUMER, name: Optional[str] = None) -> User:
        self._counter += 1
        return await self._add(
            User(
                email=f"user{self._counter}@example.com",
                name=name or f"User {self._counter}",
                role=role.value,
            )
        )

    async def store(self, owner: Optional[User] = None, name: str = "Corner Shop") -> Store:
        if owner is None:
            owner = await self.user(UserRole.RETAILER)
        return await self._add(Store(name=name, owner_id=owner.id))

    async def product(
        self,
        store: Optional[Store] = None,
        name: str = "Espresso Beans",
        price: str = "12.50",
        stock: int = 10,
    ) -> Product:
        if store is None:
            store = await self.store()
        return await self._add(
            Product(name=name, price=Decimal(price), stock=stock, store_id=store.id)
        )

    async def promotion(
        self,
        product: Optional[Product],
        ends_at: datetime,
        title: str = "Weekend Deal",
        discount: str = "20",
        active: bool = True,
    ) -> Promotion:
        return await self._add(
            Promotion(
                title=title,
                discount=Decimal(discount),
                active=active,
                ends_at=ends_at,
                product_id=product.id if product else None,
            )
        )

    async def promotions(self, product: Product, count: int, ends_at: datetime) -> list:
        async with self.session_factory() as db:
            rows = [
                Promotion(
                    title=f"Deal {i}",
                    discount=Decimal("10"),
                    active=True,
                    ends_at=ends_at,
                    product_id=product.id,
                )
                for i in range(count)
            ]
            db.add_all(rows)
            await db.commit()
            return [row.id for row in rows]

    async def subscription(
        self,
        user: User,
        ends_at: Optional[datetime],
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> UserSubscription:
        return await self._add(
            UserSubscription(user_id=user.id, status=status.value, ends_at=ends_at)
        )


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
