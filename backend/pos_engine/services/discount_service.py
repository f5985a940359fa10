# Overview: Discount resolution and discount amount computation for the sale engine.

"""
Discount Resolver

A discount reference that is missing, inactive or outside its validity
window is not an error: resolution returns None and the sale proceeds
undiscounted. Ad-hoc (manual) discounts always target every line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..models import Discount, Product
from ..money import apply_bps
from pos_engine.time_utils import to_utc_naive, utcnow

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
VALID_DISCOUNT_TYPES = [DISCOUNT_PERCENTAGE, DISCOUNT_FIXED]

TARGET_ALL = "ALL"
TARGET_PRODUCT = "PRODUCT"
TARGET_CATEGORY = "CATEGORY"


@dataclass(frozen=True)
class DiscountDescriptor:
    """
    Normalized discount.

    value is basis points for PERCENTAGE and cents for FIXED.
    """
    type: str
    value: int
    target_type: str = TARGET_ALL
    target_values: tuple = field(default_factory=tuple)


def is_discount_usable(discount: Discount, now: datetime | None = None) -> bool:
    now = to_utc_naive(now or utcnow())
    if not discount.is_active:
        return False
    start_date = to_utc_naive(discount.start_date)
    end_date = to_utc_naive(discount.end_date)
    if start_date is not None and now < start_date:
        return False
    if end_date is not None and now > end_date:
        return False
    return True


def resolve_discount(
    session,
    tenant_id: int,
    *,
    discount_id: int | None = None,
    manual_type: str | None = None,
    manual_value: int | None = None,
    now: datetime | None = None,
) -> DiscountDescriptor | None:
    """
    Resolve a discount reference or a manual descriptor.

    Returns None when nothing applies; never raises for an unusable discount.
    """
    if discount_id is not None:
        discount = session.query(Discount).filter_by(id=discount_id, tenant_id=tenant_id).first()
        if discount is None or not is_discount_usable(discount, now):
            return None
        return DiscountDescriptor(
            type=discount.discount_type,
            value=int(discount.value),
            target_type=discount.target_type or TARGET_ALL,
            target_values=tuple(str(v) for v in (discount.target_values or [])),
        )

    if manual_type is not None and manual_value is not None:
        return DiscountDescriptor(type=manual_type, value=int(manual_value))

    return None


def is_line_eligible(descriptor: DiscountDescriptor | None, product: Product) -> bool:
    if descriptor is None:
        return False
    if descriptor.target_type == TARGET_ALL:
        return True
    if descriptor.target_type == TARGET_PRODUCT:
        return str(product.id) in descriptor.target_values
    if descriptor.target_type == TARGET_CATEGORY:
        category = product.category_name
        return category is not None and category in descriptor.target_values
    return False


def compute_discount_cents(descriptor: DiscountDescriptor | None, eligible_subtotal_cents: int) -> int:
    """
    PERCENTAGE -> eligible x rate; FIXED -> capped at the eligible subtotal.
    """
    if descriptor is None or eligible_subtotal_cents <= 0:
        return 0
    if descriptor.type == DISCOUNT_PERCENTAGE:
        return apply_bps(eligible_subtotal_cents, descriptor.value)
    return min(descriptor.value, eligible_subtotal_cents)
