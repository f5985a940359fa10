# Overview: Inventory guard and stock ledger writes; encapsulates business logic and database work.

"""
Inventory Invariants (authoritative)

- Inventory holds one quantity row per (store, product); a missing row means 0.
- A sale decrements stock with a single conditional UPDATE
  (quantity = quantity - n WHERE quantity >= n). Zero rows affected means
  the sale would oversell and fails with InsufficientStockError. The check
  and the write are one statement, so concurrent sales cannot both pass.
- With allow_negative=True the decrement is unconditional and a missing row
  is created with a negative quantity.
- Every mutation appends an InventoryEvent in the same DB transaction.
- InventoryEvent is append-only (no updates/deletes).
"""

from __future__ import annotations

from ..models import Inventory, InventoryEvent, Product
from pos_engine.time_utils import utcnow
from .errors import InsufficientStockError

EVENT_SALE = "SALE"
EVENT_RECEIVE = "RECEIVE"
EVENT_ADJUST = "ADJUST"
EVENT_RETURN = "RETURN"


def get_quantity_on_hand(session, store_id: int, product_id: int) -> int:
    row = session.query(Inventory.quantity).filter_by(store_id=store_id, product_id=product_id).first()
    return int(row[0]) if row else 0


def _apply_delta(session, store_id: int, product_id: int, delta: int) -> None:
    updated = session.query(Inventory).filter(
        Inventory.store_id == store_id,
        Inventory.product_id == product_id,
    ).update(
        {Inventory.quantity: Inventory.quantity + delta},
        synchronize_session=False,
    )
    if updated == 0:
        session.add(Inventory(store_id=store_id, product_id=product_id, quantity=delta))
        session.flush()


def reserve_stock(
    session,
    *,
    store_id: int,
    product: Product,
    quantity: int,
    allow_negative: bool = False,
) -> None:
    """
    Decrement on-hand stock for one sale line, or fail the sale.

    Must run inside the sale transaction: a later failure rolls the
    decrement back together with everything else.
    """
    if allow_negative:
        _apply_delta(session, store_id, product.id, -quantity)
        return

    updated = session.query(Inventory).filter(
        Inventory.store_id == store_id,
        Inventory.product_id == product.id,
        Inventory.quantity >= quantity,
    ).update(
        {Inventory.quantity: Inventory.quantity - quantity},
        synchronize_session=False,
    )
    if updated == 0:
        available = get_quantity_on_hand(session, store_id, product.id)
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=available,
            requested=quantity,
        )


def record_event(
    session,
    *,
    store_id: int,
    product_id: int,
    event_type: str,
    quantity: int,
    user_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    supplier_id: int | None = None,
) -> InventoryEvent:
    event = InventoryEvent(
        store_id=store_id,
        product_id=product_id,
        user_id=user_id,
        event_type=event_type,
        quantity=quantity,
        reason=reason,
        sale_id=sale_id,
        supplier_id=supplier_id,
        occurred_at=utcnow(),
    )
    session.add(event)
    return event


def adjust_stock(
    session,
    *,
    store_id: int,
    product_id: int,
    quantity_delta: int,
    user_id: int | None = None,
    reason: str | None = None,
    commit: bool = True,
) -> InventoryEvent:
    """
    Manual stock correction (ADJUST event).

    Unlike sales, adjustments may drive the quantity negative; they exist
    to bring the book value in line with a physical count.
    """
    if quantity_delta == 0:
        raise ValueError("quantity_delta must be non-zero")

    _apply_delta(session, store_id, product_id, quantity_delta)
    event = record_event(
        session,
        store_id=store_id,
        product_id=product_id,
        event_type=EVENT_ADJUST,
        quantity=quantity_delta,
        user_id=user_id,
        reason=reason,
    )

    if commit:
        session.commit()
    else:
        session.flush()
    return event
