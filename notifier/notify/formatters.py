"""Title/message templates for in-app notifications.

Each formatter returns a ``(title, message)`` tuple so callers can hand the
pair straight to the notification service.
"""

from decimal import Decimal
from typing import Tuple

Message = Tuple[str, str]


def _money(value) -> str:
    amount = Decimal(str(value)).quantize(Decimal("0.01"))
    return f"${amount}"


def product_created(product_name: str, store_name: str) -> Message:
    return (
        f"New product at {store_name}",
        f"{product_name} has been added to {store_name}",
    )


def product_price_changed(product_name: str, old_price, new_price) -> Message:
    direction = "decreased" if old_price > new_price else "increased"
    return (
        f"Price {direction} for {product_name}",
        f"The price of {product_name} has {direction} from {_money(old_price)} to {_money(new_price)}",
    )


def product_back_in_stock(product_name: str, store_name: str) -> Message:
    return (
        f"{product_name} is back in stock!",
        f"{product_name} is now available at {store_name}",
    )


def product_low_stock(product_name: str, stock: int) -> Message:
    return (
        f"Low stock: {product_name}",
        f"Only {stock} left in stock for {product_name}",
    )


def promotion_created(title: str, description: str | None, discount) -> Message:
    return (
        f"New promotion: {title}",
        f"{description or title} - {Decimal(str(discount)).normalize():f}% off!",
    )


def promotion_ending_soon() -> Message:
    return (
        "Promotion Ending Soon",
        "Your promotion is about to end, please check it out",
    )


def promotion_ended(title: str) -> Message:
    return ("Promotion Ended", f'Your promotion "{title}" has ended')


def promotion_nearby() -> Message:
    return ("Promotion Nearby!", "There's a Promotion Nearby Check it out!")


def store_verification_changed(store_name: str, is_verified: bool) -> Message:
    if is_verified:
        return (
            "Store Approved!",
            "Your store is approved, you can now show your products on the air",
        )
    return (
        "Store verification status changed",
        f'The verification status of "{store_name}" has been updated.',
    )


def store_under_review() -> Message:
    return (
        "Store Review in Progress",
        "Please wait for a moment, admin is reviewing your store",
    )


def store_created() -> Message:
    return ("New Store Created", "A store is created, waiting for your approval")


def subscription_available() -> Message:
    return (
        "New Subscription Available!",
        "There's new subscription, you might be interested in!",
    )


def subscription_ending_soon() -> Message:
    return (
        "Subscription Ending Soon",
        "Your subscription is about to end, please check it out",
    )


def subscription_expired() -> Message:
    return ("Subscription Expired", "Your subscription has expired")


def consumer_welcome() -> Message:
    return (
        "Welcome!",
        "Welcome consumer, please enjoy and find products, deals near you!",
    )


def gps_reminder() -> Message:
    return (
        "GPS Reminder",
        "Be advised, turn on your gps so that we can track your position accurately",
    )


def questionable_product_pricing(store_id: int) -> Message:
    return (
        "Questionable Product Pricing",
        f"A product was created with questionable pricing (store {store_id})",
    )


def questionable_promotion_pricing(store_id: int) -> Message:
    return (
        "Questionable Promotion Pricing",
        f"A promotion was created with questionable pricing (store {store_id})",
    )
