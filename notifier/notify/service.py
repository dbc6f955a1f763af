"""Notification service: creates, reads and fans out in-app notifications."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from notifier.config import settings
from notifier.db.models import (
    Notification,
    NotificationType,
    Product,
    ProductBookmark,
    Promotion,
    Store,
    StoreBookmark,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserRole,
    UserSubscription,
)
from notifier.notify import formatters

logger = logging.getLogger(__name__)


class NotificationNotFoundError(LookupError):
    """Notification does not exist or belongs to another user."""

    def __init__(self, notification_id: int, user_id: int):
        self.notification_id = notification_id
        self.user_id = user_id
        super().__init__(f"Notification {notification_id} not found for user {user_id}")


def _dedupe_ids(user_ids: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for user_id in user_ids:
        if user_id not in seen:
            seen.add(user_id)
            ordered.append(user_id)
    return ordered


class NotificationService:
    """
    Notification management on top of an async session.

    Writes are flushed, not committed: the caller owns the transaction so a
    notification can be committed together with other writes (or alone).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========== Writers ==========

    async def create_notification(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        product_id: Optional[int] = None,
        store_id: Optional[int] = None,
        promotion_id: Optional[int] = None,
    ) -> Notification:
        """Create a single notification for a user."""
        notification = Notification(
            user_id=user_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            product_id=product_id,
            store_id=store_id,
            promotion_id=promotion_id,
            read=False,
            created_at=datetime.utcnow(),
        )
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def create_notifications_for_users(
        self,
        user_ids: List[int],
        type: NotificationType,
        title: str,
        message: str,
        product_id: Optional[int] = None,
        store_id: Optional[int] = None,
        promotion_id: Optional[int] = None,
    ) -> List[Notification]:
        """
        Create the same notification for many users in one statement.

        Returns an empty list, without touching the database, when no user
        IDs are given.
        """
        if not user_ids:
            return []

        now = datetime.utcnow()
        rows = [
            {
                "user_id": user_id,
                "type": NotificationType(type).value,
                "title": title,
                "message": message,
                "product_id": product_id,
                "store_id": store_id,
                "promotion_id": promotion_id,
                "read": False,
                "created_at": now,
            }
            for user_id in user_ids
        ]
        result = await self.db.scalars(insert(Notification).returning(Notification), rows)
        return list(result.all())

    # ========== Readers ==========

    async def get_user_notifications(
        self,
        user_id: int,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        read: Optional[bool] = None,
    ) -> List[Notification]:
        """List a user's notifications, newest first, optionally filtered by read state."""
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        if read is not None:
            query = query.where(Notification.read == read)
        if skip:
            query = query.offset(skip)
        if take:
            query = query.limit(take)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_unread_count(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        )
        return result.scalar() or 0

    async def _get_owned(self, notification_id: int, user_id: int) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotificationNotFoundError(notification_id, user_id)
        return notification

    async def mark_as_read(self, notification_id: int, user_id: int) -> Notification:
        """Mark one of the user's notifications as read."""
        notification = await self._get_owned(notification_id, user_id)
        if not notification.read:
            notification.read = True
            notification.read_at = datetime.utcnow()
            await self.db.flush()
        return notification

    async def mark_all_as_read(self, user_id: int) -> int:
        """Mark every unread notification of a user as read. Returns the count updated."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
            .values(read=True, read_at=datetime.utcnow())
        )
        return result.rowcount or 0

    async def delete_notification(self, notification_id: int, user_id: int) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        await self.db.delete(notification)
        await self.db.flush()
        return notification

    # ========== Recipient lookups ==========

    async def _user_ids_with_role(self, role: UserRole) -> List[int]:
        result = await self.db.execute(select(User.id).where(User.role == role.value))
        return [row[0] for row in result.all()]

    async def _product_bookmarker_ids(self, product_id: int) -> List[int]:
        result = await self.db.execute(
            select(ProductBookmark.user_id).where(ProductBookmark.product_id == product_id)
        )
        return [row[0] for row in result.all()]

    async def _store_bookmarker_ids(self, store_id: int) -> List[int]:
        result = await self.db.execute(
            select(StoreBookmark.user_id).where(StoreBookmark.store_id == store_id)
        )
        return [row[0] for row in result.all()]

    async def _get_product(self, product_id: int) -> Optional[Product]:
        result = await self.db.execute(
            select(Product)
            .options(joinedload(Product.store))
            .where(Product.id == product_id)
        )
        return result.scalar_one_or_none()

    async def _resolve_promotion_owner(self, promotion_id: int):
        """
        Resolve promotion -> product -> store in one query.

        Returns:
            (promotion, store) or (promotion, None) when the chain is broken,
            or (None, None) when the promotion does not exist
        """
        result = await self.db.execute(
            select(Promotion, Store)
            .outerjoin(Product, Promotion.product_id == Product.id)
            .outerjoin(Store, Product.store_id == Store.id)
            .where(Promotion.id == promotion_id)
        )
        row = result.first()
        if row is None:
            return None, None
        return row[0], row[1]

    # ========== Product / promotion events (consumers) ==========

    async def notify_product_created(self, product_id: int, store_id: int) -> List[Notification]:
        """Notify users who bookmarked the store that a product was added."""
        product = await self._get_product(product_id)
        if product is None:
            return []

        user_ids = await self._store_bookmarker_ids(store_id)
        title, message = formatters.product_created(product.name, product.store.name)
        return await self.create_notifications_for_users(
            user_ids,
            NotificationType.PRODUCT_CREATED,
            title,
            message,
            product_id=product_id,
            store_id=store_id,
        )

    async def notify_product_price_changed(
        self, product_id: int, old_price, new_price
    ) -> List[Notification]:
        """Notify users who bookmarked the product about a price change."""
        product = await self._get_product(product_id)
        if product is None or old_price == new_price:
            return []

        user_ids = await self._product_bookmarker_ids(product_id)
        title, message = formatters.product_price_changed(product.name, old_price, new_price)
        return await self.create_notifications_for_users(
            user_ids,
            NotificationType.PRODUCT_PRICE_CHANGED,
            title,
            message,
            product_id=product_id,
            store_id=product.store_id,
        )

    async def notify_product_stock_changed(
        self, product_id: int, old_stock: int, new_stock: int
    ) -> List[Notification]:
        """Notify bookmarkers when a product is back in stock or running low."""
        product = await self._get_product(product_id)
        if product is None:
            return []

        if old_stock == 0 and new_stock > 0:
            title, message = formatters.product_back_in_stock(product.name, product.store.name)
        elif 0 < new_stock <= settings.low_stock_threshold:
            title, message = formatters.product_low_stock(product.name, new_stock)
        else:
            return []

        user_ids = await self._product_bookmarker_ids(product_id)
        return await self.create_notifications_for_users(
            user_ids,
            NotificationType.PRODUCT_STOCK_CHANGED,
            title,
            message,
            product_id=product_id,
            store_id=product.store_id,
        )

    async def notify_promotion_created(self, promotion_id: int) -> List[Notification]:
        """Notify product and store bookmarkers about a new promotion."""
        promotion, store = await self._resolve_promotion_owner(promotion_id)
        if promotion is None or store is None:
            return []

        product_users = await self._product_bookmarker_ids(promotion.product_id)
        store_users = await self._store_bookmarker_ids(store.id)
        user_ids = _dedupe_ids(product_users + store_users)

        title, message = formatters.promotion_created(
            promotion.title, promotion.description, promotion.discount
        )
        return await self.create_notifications_for_users(
            user_ids,
            NotificationType.PROMOTION_CREATED,
            title,
            message,
            promotion_id=promotion_id,
            product_id=promotion.product_id,
            store_id=store.id,
        )

    async def notify_promotion_nearby(
        self, user_id: int, promotion_id: int, store_id: int
    ) -> Optional[Notification]:
        promotion = await self.db.get(Promotion, promotion_id)
        if promotion is None:
            return None
        title, message = formatters.promotion_nearby()
        return await self.create_notification(
            user_id,
            NotificationType.PROMOTION_NEARBY,
            title,
            message,
            promotion_id=promotion_id,
            store_id=store_id,
        )

    # ========== Retailer notifications ==========

    async def notify_promotion_ending_soon(self, promotion_id: int) -> Optional[Notification]:
        """
        Notify the store owner that a promotion is about to end.

        Returns None (silently) if the promotion has no end date or its
        product/store chain does not resolve.
        """
        promotion, store = await self._resolve_promotion_owner(promotion_id)
        if promotion is None or promotion.ends_at is None or store is None:
            return None

        title, message = formatters.promotion_ending_soon()
        return await self.create_notification(
            store.owner_id,
            NotificationType.PROMOTION_ENDING_SOON,
            title,
            message,
            promotion_id=promotion_id,
            store_id=store.id,
        )

    async def notify_promotion_ended(self, promotion_id: int) -> Optional[Notification]:
        """Notify the store owner that a promotion has ended."""
        promotion, store = await self._resolve_promotion_owner(promotion_id)
        if promotion is None or store is None:
            return None

        title, message = formatters.promotion_ended(promotion.title)
        return await self.create_notification(
            store.owner_id,
            NotificationType.PROMOTION_ENDED,
            title,
            message,
            promotion_id=promotion_id,
            store_id=store.id,
        )

    async def notify_store_verification_status_changed(
        self, store_id: int, is_verified: bool
    ) -> Optional[Notification]:
        store = await self.db.get(Store, store_id)
        if store is None:
            return None
        title, message = formatters.store_verification_changed(store.name, is_verified)
        return await self.create_notification(
            store.owner_id, NotificationType.STORE_VERIFIED, title, message, store_id=store_id
        )

    async def notify_store_under_review(self, store_id: int) -> Optional[Notification]:
        store = await self.db.get(Store, store_id)
        if store is None:
            return None
        title, message = formatters.store_under_review()
        return await self.create_notification(
            store.owner_id, NotificationType.STORE_UNDER_REVIEW, title, message, store_id=store_id
        )

    async def notify_new_subscription_available(self, plan_id: int) -> List[Notification]:
        """Tell every retailer about a new active subscription plan."""
        plan = await self.db.get(SubscriptionPlan, plan_id)
        if plan is None or not plan.is_active:
            return []

        retailer_ids = await self._user_ids_with_role(UserRole.RETAILER)
        title, message = formatters.subscription_available()
        return await self.create_notifications_for_users(
            retailer_ids, NotificationType.SUBSCRIPTION_AVAILABLE, title, message
        )

    async def notify_subscription_ending_soon(self, user_id: int) -> Optional[Notification]:
        """Notify a user whose newest active subscription has an end date."""
        result = await self.db.execute(
            select(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(UserSubscription.created_at.desc())
            .limit(1)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None or subscription.ends_at is None:
            return None

        title, message = formatters.subscription_ending_soon()
        return await self.create_notification(
            user_id, NotificationType.SUBSCRIPTION_ENDING_SOON, title, message
        )

    async def notify_subscription_status_changed(
        self, user_id: int, type: NotificationType, title: str, message: str
    ) -> Notification:
        return await self.create_notification(user_id, type, title, message)

    # ========== Consumer notifications ==========

    async def notify_consumer_welcome(self, user_id: int) -> Notification:
        title, message = formatters.consumer_welcome()
        return await self.create_notification(
            user_id, NotificationType.CONSUMER_WELCOME, title, message
        )

    async def notify_gps_reminder(self, user_id: int) -> Notification:
        title, message = formatters.gps_reminder()
        return await self.create_notification(
            user_id, NotificationType.GPS_REMINDER, title, message
        )

    # ========== Admin notifications ==========

    async def notify_admin_store_created(self, store_id: int) -> List[Notification]:
        store = await self.db.get(Store, store_id)
        if store is None:
            return []
        admin_ids = await self._user_ids_with_role(UserRole.ADMIN)
        title, message = formatters.store_created()
        return await self.create_notifications_for_users(
            admin_ids, NotificationType.STORE_CREATED, title, message, store_id=store_id
        )

    async def notify_admin_questionable_product_pricing(
        self, product_id: int, store_id: int
    ) -> List[Notification]:
        admin_ids = await self._user_ids_with_role(UserRole.ADMIN)
        title, message = formatters.questionable_product_pricing(store_id)
        return await self.create_notifications_for_users(
            admin_ids,
            NotificationType.QUESTIONABLE_PRICING_PRODUCT,
            title,
            message,
            product_id=product_id,
            store_id=store_id,
        )

    async def notify_admin_questionable_promotion_pricing(
        self, promotion_id: int, store_id: int
    ) -> List[Notification]:
        admin_ids = await self._user_ids_with_role(UserRole.ADMIN)
        title, message = formatters.questionable_promotion_pricing(store_id)
        return await self.create_notifications_for_users(
            admin_ids,
            NotificationType.QUESTIONABLE_PRICING_PROMOTION,
            title,
            message,
            promotion_id=promotion_id,
            store_id=store_id,
        )
