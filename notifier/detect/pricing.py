"""Pricing anomaly rules for products and promotions.

Flags prices that look like data-entry errors so admins can review them.
"""

from decimal import Decimal
from typing import Optional, Union

from notifier.config import settings

Number = Union[int, float, Decimal]


def is_questionable_product_price(price: Number) -> bool:
    """
    Check if a product price needs admin review.

    Args:
        price: Product price in currency units

    Returns:
        True if the price is below the minimum or above the maximum sane price
    """
    value = float(price)
    return value < settings.min_product_price or value > settings.max_product_price


def is_questionable_promotion_discount(
    discount: Number,
    original_price: Optional[Number] = None,
    discounted_price: Optional[Number] = None,
) -> bool:
    """
    Check if a promotion discount needs admin review.

    A discount is questionable if it is negative or above the maximum allowed
    percentage. When both prices are given it is also questionable if the
    computed discount is more than the tolerance away from the stated one, or
    if the discounted price is below the minimum price.

    Args:
        discount: Stated discount percentage (0-100)
        original_price: Product price before the discount
        discounted_price: Product price after the discount

    Returns:
        True if the discount should be flagged
    """
    stated = float(discount)
    if stated > settings.max_promotion_discount_percent or stated < 0:
        return True

    if original_price is not None and discounted_price is not None:
        original = float(original_price)
        discounted = float(discounted_price)
        if original <= 0:
            return True

        computed = (original - discounted) / original * 100
        if abs(computed - stated) > settings.discount_tolerance_percent:
            return True

        if discounted < settings.min_product_price:
            return True

    return False


def discounted_price(original_price: Number, discount: Number) -> Decimal:
    """Price after applying a percentage discount, rounded to cents."""
    original = Decimal(str(original_price))
    factor = Decimal(1) - Decimal(str(discount)) / Decimal(100)
    return (original * factor).quantize(Decimal("0.01"))
