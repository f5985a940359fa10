from __future__ import annotations

from ..extensions import db
from pos_engine.time_utils import to_utc_z

_OPEN_ONLY = db.text("status = 'OPEN'")


class Till(db.Model):
    """
    Named cash drawer in a store.

    status mirrors whether the till currently has an OPEN session.
    """
    __tablename__ = "tills"
    __table_args__ = (
        db.UniqueConstraint("store_id", "name", name="uq_tills_store_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="CLOSED", index=True)  # OPEN, CLOSED
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("tills", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "name": self.name,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TillSession(db.Model):
    """
    One open/close cycle of a till.

    LIFECYCLE:
    - OPEN: Sales may reference this session
    - CLOSED: Cash counted, expected cash and variance frozen

    The partial unique indexes allow at most one OPEN session per till and
    one OPEN session per (user, store). store_id is copied from the till so
    the second index can be expressed on this table alone.
    """
    __tablename__ = "till_sessions"
    __table_args__ = (
        db.Index(
            "uq_till_sessions_open_till",
            "till_id",
            unique=True,
            sqlite_where=_OPEN_ONLY,
            postgresql_where=_OPEN_ONLY,
        ),
        db.Index(
            "uq_till_sessions_open_user_store",
            "user_id",
            "store_id",
            unique=True,
            sqlite_where=_OPEN_ONLY,
            postgresql_where=_OPEN_ONLY,
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    till = db.relationship("Till", backref=db.backref("sessions", lazy=True))
    user = db.relationship("User", backref=db.backref("till_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "till_id": self.till_id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashTransaction(db.Model):
    """
    Non-sale cash movement in a till session.

    TYPES:
    - CASH_IN: Cash added to the drawer (float top-up)
    - CASH_OUT: Cash removed from the drawer (pay-out, drop to safe)
    """
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_transactions_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    till_session_id = db.Column(db.Integer, db.ForeignKey("till_sessions.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    till_session = db.relationship("TillSession", backref=db.backref("cash_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "till_session_id": self.till_session_id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
