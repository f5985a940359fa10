from __future__ import annotations

from ..extensions import db
from pos_engine.time_utils import to_utc_z


class Inventory(db.Model):
    """
    On-hand quantity per (store, product).

    Sales decrement this row with a conditional UPDATE, so there is no
    version column: the row is never loaded, modified and flushed by the
    sale path.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_inventory_store_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryEvent(db.Model):
    """
    Append-only audit trail of stock mutations.

    EVENT TYPES:
    - SALE: Units sold (negative quantity)
    - RECEIVE: Units received from a supplier
    - ADJUST: Manual correction
    - RETURN: Units returned to a supplier

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_events"
    __table_args__ = (
        db.Index("ix_inventory_events_store_product_occurred", "store_id", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)  # Signed delta
    reason = db.Column(db.String(255), nullable=True)

    supplier_id = db.Column(db.Integer, nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "quantity": self.quantity,
            "reason": self.reason,
            "supplier_id": self.supplier_id,
            "sale_id": self.sale_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
