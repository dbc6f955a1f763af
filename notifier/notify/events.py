"""Event hooks called by the CRUD layer after its own writes have committed.

Each hook runs in a fresh session and never raises: a failed notification is
logged and must not fail the request that triggered it.
"""

import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy import select

from notifier.db.models import Product, Promotion, UserRole
from notifier.db.session import AsyncSessionLocal
from notifier.detect.pricing import (
    discounted_price,
    is_questionable_product_price,
    is_questionable_promotion_discount,
)
from notifier.notify.service import NotificationService

logger = logging.getLogger(__name__)


class NotificationEvents:
    """Fan-out of marketplace events into notifications."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def _run(
        self,
        label: str,
        handler: Callable[[NotificationService], Awaitable[None]],
    ) -> bool:
        try:
            async with self.session_factory() as db:
                await handler(NotificationService(db))
                await db.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to create {label} notifications: {e}", exc_info=True)
            return False

    async def product_created(self, product_id: int, store_id: int, price) -> None:
        """Flag questionable prices to admins and tell store bookmarkers."""
        if is_questionable_product_price(price):
            logger.warning(
                f"Questionable product price detected - product {product_id}, price {price}"
            )
            await self._run(
                "questionable product pricing",
                lambda svc: svc.notify_admin_questionable_product_pricing(product_id, store_id),
            )

        await self._run(
            "product created",
            lambda svc: svc.notify_product_created(product_id, store_id),
        )

    async def product_updated(
        self,
        product_id: int,
        old_price=None,
        new_price=None,
        old_stock: Optional[int] = None,
        new_stock: Optional[int] = None,
    ) -> None:
        """Notify bookmarkers about price and stock changes."""
        if old_price is not None and new_price is not None and old_price != new_price:
            await self._run(
                "price change",
                lambda svc: svc.notify_product_price_changed(product_id, old_price, new_price),
            )
        if old_stock is not None and new_stock is not None and old_stock != new_stock:
            await self._run(
                "stock change",
                lambda svc: svc.notify_product_stock_changed(product_id, old_stock, new_stock),
            )

    async def promotion_created(self, promotion_id: int) -> None:
        """Check the discount against the product price, then notify bookmarkers."""

        async def review_pricing(svc: NotificationService) -> None:
            result = await svc.db.execute(
                select(Promotion.discount, Product.price, Product.store_id)
                .join(Product, Promotion.product_id == Product.id)
                .where(Promotion.id == promotion_id)
            )
            row = result.first()
            if row is None:
                return
            discount, price, store_id = row
            if is_questionable_promotion_discount(
                discount, price, discounted_price(price, discount)
            ):
                logger.warning(
                    f"Questionable promotion discount detected - promotion {promotion_id}, "
                    f"discount {discount}%"
                )
                await svc.notify_admin_questionable_promotion_pricing(promotion_id, store_id)

        await self._run("promotion pricing review", review_pricing)
        await self._run(
            "promotion created",
            lambda svc: svc.notify_promotion_created(promotion_id),
        )

    async def store_created(self, store_id: int) -> None:
        await self._run("store under review", lambda svc: svc.notify_store_under_review(store_id))
        await self._run("admin store created", lambda svc: svc.notify_admin_store_created(store_id))

    async def store_verification_changed(self, store_id: int, is_verified: bool) -> None:
        await self._run(
            "store verification",
            lambda svc: svc.notify_store_verification_status_changed(store_id, is_verified),
        )

    async def user_registered(self, user_id: int, role: str) -> None:
        if role == UserRole.CONSUMER.value:
            await self._run("welcome", lambda svc: svc.notify_consumer_welcome(user_id))

    async def subscription_plan_created(self, plan_id: int) -> None:
        await self._run(
            "subscription available",
            lambda svc: svc.notify_new_subscription_available(plan_id),
        )


# Global event hooks instance
notification_events = NotificationEvents()
