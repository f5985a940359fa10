# Overview: Loyalty point redemption and accrual against a customer's running balance.

"""
Loyalty Ledger

- Redemption converts points into a discount amount and debits the balance
  immediately, inside the sale transaction.
- Accrual credits floor(taxable amount x earn rate) points to loyalty
  members only.
- Both operate on a customer row locked for the sale transaction; the
  customer's version column rejects concurrent lost updates. Customers
  whose balance cannot change (e.g. the walk-in customer) are never locked.
- Every balance change appends a LoyaltyTransaction.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..models import Customer, LoyaltyTransaction
from ..money import cents_to_units, floor_int, units_to_cents
from pos_engine.time_utils import utcnow
from .concurrency import lock_for_update
from .errors import InsufficientPointsError, NotFoundError

logger = logging.getLogger(__name__)

LOYALTY_EARN = "EARN"
LOYALTY_REDEEM = "REDEEM"


def load_customer(session, tenant_id: int, customer_id: int, *, for_update: bool = False) -> Customer:
    """
    Load a tenant customer.

    for_update=True locks the row and refreshes any copy already in the session.
    """
    query = session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    customer = query.first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def find_walk_in_customer(session, tenant_id: int, code: str) -> Customer | None:
    return session.query(Customer).filter_by(tenant_id=tenant_id, code=code).first()


def redemption_value_cents(points: int, redeem_rate: Decimal) -> int:
    return units_to_cents(Decimal(points) * redeem_rate)


def points_for_amount(taxable_cents: int, earn_rate: Decimal) -> int:
    if taxable_cents <= 0:
        return 0
    return floor_int(cents_to_units(taxable_cents) * earn_rate)


def redeem_points(customer: Customer, points: int, redeem_rate: Decimal) -> int:
    """
    Debit points from the customer and return their value in cents.

    Raises:
        InsufficientPointsError: If the balance is below the requested points
    """
    if customer.loyalty_points < points:
        raise InsufficientPointsError(
            "Insufficient loyalty points",
            details={"available": customer.loyalty_points, "requested": points},
        )
    customer.loyalty_points -= points
    return redemption_value_cents(points, redeem_rate)


def accrue_points(customer: Customer, taxable_cents: int, earn_rate: Decimal) -> int:
    """Credit earned points to a loyalty member. Returns the points credited."""
    if not customer.is_loyalty_member:
        return 0
    earned = points_for_amount(taxable_cents, earn_rate)
    if earned > 0:
        customer.loyalty_points += earned
    return earned


def record_loyalty_movements(session, customer: Customer, sale_id: int, used: int, earned: int) -> None:
    now = utcnow()
    if used:
        session.add(LoyaltyTransaction(
            customer_id=customer.id,
            sale_id=sale_id,
            transaction_type=LOYALTY_REDEEM,
            points=-used,
            occurred_at=now,
        ))
    if earned:
        session.add(LoyaltyTransaction(
            customer_id=customer.id,
            sale_id=sale_id,
            transaction_type=LOYALTY_EARN,
            points=earned,
            occurred_at=now,
        ))
    if used or earned:
        logger.info(
            "Loyalty movement customer=%s sale=%s redeemed=%s earned=%s balance=%s",
            customer.id, sale_id, used, earned, customer.loyalty_points,
        )
