"""
Till and Till Session Management

Tracks named cash drawers, their open/close cycles and the cash that moves
through them outside of sales.

DESIGN PRINCIPLES:
- At most one OPEN session per till
- At most one OPEN session per (user, store); other stores are independent
- Both rules are backed by unique partial indexes, so a concurrent open that
  slips past the pre-checks still fails at flush time
- Sessions are immutable once closed
- Expected cash = opening float + net cash from sales + cash in - cash out
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..models import Till, TillSession, CashTransaction, Sale, Payment, Store
from ..models.sales import SALE_STATUS_COMPLETED
from ..validation import ValidationError
from pos_engine.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    DuplicateTillNameError,
    InvalidTillSessionError,
    NotFoundError,
    StoreMismatchError,
    TillAlreadyOpenError,
    TillInUseError,
    UserAlreadySessionOpenError,
)

logger = logging.getLogger(__name__)

STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"

CASH_IN = "CASH_IN"
CASH_OUT = "CASH_OUT"
VALID_CASH_TRANSACTION_TYPES = [CASH_IN, CASH_OUT]

CASH_TENDER = "CASH"


@dataclass(frozen=True)
class CashTotals:
    """Cash that should be in the drawer for one session."""
    opening_float_cents: int
    cash_payments_cents: int
    change_given_cents: int
    cash_in_cents: int
    cash_out_cents: int

    @property
    def cash_sales_cents(self) -> int:
        return self.cash_payments_cents - self.change_given_cents

    @property
    def expected_cash_cents(self) -> int:
        return self.opening_float_cents + self.cash_sales_cents + self.cash_in_cents - self.cash_out_cents


class TillService:
    def __init__(self, session):
        self.session = session

    # =========================================================================
    # TILL MANAGEMENT
    # =========================================================================

    def create_till(self, tenant_id: int, store_id: int, name: str) -> Till:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name required")

        store = self.session.query(Store).filter_by(id=store_id, tenant_id=tenant_id).first()
        if not store:
            raise NotFoundError(f"Store {store_id} not found")

        self._ensure_name_free(store_id, name)

        till = Till(tenant_id=tenant_id, store_id=store_id, name=name, status=STATUS_CLOSED)
        self.session.add(till)
        self.session.commit()
        logger.info("Till %s (%s) created in store %s", till.id, till.name, store_id)
        return till

    def get_till(self, till_id: int, tenant_id: int | None = None) -> Till:
        query = self.session.query(Till).filter_by(id=till_id)
        if tenant_id is not None:
            query = query.filter_by(tenant_id=tenant_id)
        till = query.first()
        if not till:
            raise NotFoundError(f"Till {till_id} not found")
        return till

    def list_tills(self, tenant_id: int, store_id: int | None = None) -> list[dict]:
        """Tills ordered by name, each with its OPEN session (or None)."""
        query = self.session.query(Till).filter_by(tenant_id=tenant_id)
        if store_id is not None:
            query = query.filter_by(store_id=store_id)
        tills = query.order_by(Till.name.asc()).all()

        open_sessions = {}
        if tills:
            rows = self.session.query(TillSession).filter(
                TillSession.till_id.in_([t.id for t in tills]),
                TillSession.status == STATUS_OPEN,
            ).all()
            open_sessions = {s.till_id: s for s in rows}

        results = []
        for till in tills:
            data = till.to_dict()
            active = open_sessions.get(till.id)
            data["active_session"] = active.to_dict() if active else None
            results.append(data)
        return results

    def rename_till(self, till_id: int, name: str, *, tenant_id: int | None = None) -> Till:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name required")

        till = self.get_till(till_id, tenant_id)
        if name != till.name:
            self._ensure_name_free(till.store_id, name)
            till.name = name
            self.session.commit()
        return till

    def delete_till(self, till_id: int, *, tenant_id: int | None = None) -> None:
        """Delete a till that has never had a session."""
        till = self.get_till(till_id, tenant_id)

        has_history = self.session.query(TillSession.id).filter_by(till_id=till.id).first()
        if has_history:
            raise TillInUseError(
                f'Till "{till.name}" has session history and cannot be deleted',
                details={"till_id": till.id},
            )

        self.session.delete(till)
        self.session.commit()
        logger.info("Till %s deleted", till_id)

    def _ensure_name_free(self, store_id: int, name: str) -> None:
        clash = self.session.query(Till.id).filter_by(store_id=store_id, name=name).first()
        if clash:
            raise DuplicateTillNameError(
                f'A till named "{name}" already exists in this store',
                details={"store_id": store_id, "name": name},
            )

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def open_session(
        self,
        till_id: int,
        user_id: int,
        opening_float_cents: int,
        *,
        tenant_id: int | None = None,
    ) -> TillSession:
        """
        Open a new session on a till.

        Raises:
            NotFoundError: Till does not exist
            TillAlreadyOpenError: Till already has an OPEN session
            UserAlreadySessionOpenError: User has an OPEN session on another till of the same store
        """
        if opening_float_cents < 0:
            raise ValidationError("opening_float_cents must be >= 0")

        def _op():
            query = self.session.query(Till).filter_by(id=till_id)
            if tenant_id is not None:
                query = query.filter_by(tenant_id=tenant_id)
            till = lock_for_update(query).first()
            if not till:
                raise NotFoundError(f"Till {till_id} not found")

            self._check_can_open(till, user_id)

            till_session = TillSession(
                till_id=till.id,
                store_id=till.store_id,
                user_id=user_id,
                status=STATUS_OPEN,
                opening_float_cents=opening_float_cents,
                opened_at=utcnow(),
            )
            till.status = STATUS_OPEN
            self.session.add(till_session)
            self.session.commit()
            return till_session

        try:
            till_session = run_with_retry(self.session, _op)
        except IntegrityError as exc:
            # Lost the race to a concurrent open; report which rule was hit.
            till = self.get_till(till_id, tenant_id)
            self._check_can_open(till, user_id)
            raise TillAlreadyOpenError(f'Till "{till.name}" already has an open session') from exc

        logger.info(
            "Till session %s opened till=%s user=%s float_cents=%s",
            till_session.id, till_id, user_id, opening_float_cents,
        )
        return till_session

    def _check_can_open(self, till: Till, user_id: int) -> None:
        existing = self.session.query(TillSession).filter_by(
            till_id=till.id, status=STATUS_OPEN
        ).first()
        if existing:
            raise TillAlreadyOpenError(
                f'Till "{till.name}" already has an open session',
                details={"till_id": till.id, "session_id": existing.id},
            )

        user_open = self.session.query(TillSession).filter_by(
            user_id=user_id, store_id=till.store_id, status=STATUS_OPEN
        ).first()
        if user_open:
            raise UserAlreadySessionOpenError(
                "You already have an open session on another till in this store",
                details={"user_id": user_id, "session_id": user_open.id, "till_id": user_open.till_id},
            )

    def validate_for_sale(self, session_id: int, store_id: int) -> TillSession:
        """
        Check that a sale may be posted against this session.

        Takes a shared lock on the session row so a concurrent close waits
        for the sale transaction. Does not commit.
        """
        till_session = lock_for_update(
            self.session.query(TillSession).filter_by(id=session_id), read=True
        ).first()
        if not till_session:
            raise InvalidTillSessionError(
                f"Till session {session_id} not found", details={"till_session_id": session_id}
            )
        if till_session.status != STATUS_OPEN:
            raise InvalidTillSessionError(
                "Till session is not open", details={"till_session_id": session_id}
            )
        if till_session.till.store_id != store_id:
            raise StoreMismatchError(
                "Till session belongs to a different store",
                details={"till_session_id": session_id, "store_id": till_session.till.store_id},
            )
        return till_session

    def close_session(
        self,
        session_id: int,
        closing_cash_cents: int,
        *,
        tenant_id: int | None = None,
    ) -> TillSession:
        """
        Close a session, freezing expected cash and variance.

        IMMUTABLE: Once closed, a session cannot be reopened or modified.
        """
        if closing_cash_cents < 0:
            raise ValidationError("closing_cash_cents must be >= 0")

        def _op():
            till_session = lock_for_update(self._session_query(session_id, tenant_id)).first()
            if not till_session:
                raise NotFoundError(f"Till session {session_id} not found")
            if till_session.status != STATUS_OPEN:
                raise InvalidTillSessionError(
                    "Till session is already closed", details={"till_session_id": session_id}
                )

            totals = self.cash_totals(till_session)
            expected = totals.expected_cash_cents

            till_session.status = STATUS_CLOSED
            till_session.closed_at = utcnow()
            till_session.closing_cash_cents = closing_cash_cents
            till_session.expected_cash_cents = expected
            till_session.variance_cents = closing_cash_cents - expected

            till = lock_for_update(self.session.query(Till).filter_by(id=till_session.till_id)).first()
            till.status = STATUS_CLOSED

            self.session.commit()
            return till_session

        till_session = run_with_retry(self.session, _op)
        logger.info(
            "Till session %s closed expected_cents=%s closing_cents=%s variance_cents=%s",
            till_session.id,
            till_session.expected_cash_cents,
            till_session.closing_cash_cents,
            till_session.variance_cents,
        )
        return till_session

    def record_cash_transaction(
        self,
        till_session_id: int,
        transaction_type: str,
        amount_cents: int,
        reason: str | None = None,
        user_id: int | None = None,
        *,
        tenant_id: int | None = None,
    ) -> CashTransaction:
        """Record a CASH_IN or CASH_OUT against an OPEN session."""
        if transaction_type not in VALID_CASH_TRANSACTION_TYPES:
            raise ValidationError(f"type must be one of {VALID_CASH_TRANSACTION_TYPES}")
        if amount_cents <= 0:
            raise ValidationError("amount_cents must be > 0")

        till_session = lock_for_update(self._session_query(till_session_id, tenant_id), read=True).first()
        if not till_session:
            raise NotFoundError(f"Till session {till_session_id} not found")
        if till_session.status != STATUS_OPEN:
            raise InvalidTillSessionError(
                "Cash can only be moved on an open till session",
                details={"till_session_id": till_session_id},
            )

        txn = CashTransaction(
            till_session_id=till_session.id,
            user_id=user_id,
            transaction_type=transaction_type,
            amount_cents=amount_cents,
            reason=reason,
            created_at=utcnow(),
        )
        self.session.add(txn)
        self.session.commit()

        logger.info(
            "Cash %s of %s cents on till session %s", transaction_type, amount_cents, till_session_id
        )
        return txn

    def get_active_session(self, user_id: int, store_id: int | None = None) -> TillSession | None:
        """The user's OPEN session, optionally restricted to one store."""
        query = self.session.query(TillSession).filter_by(user_id=user_id, status=STATUS_OPEN)
        if store_id is not None:
            query = query.filter_by(store_id=store_id)
        return query.order_by(TillSession.opened_at.desc()).first()

    # =========================================================================
    # READ MODELS
    # =========================================================================

    def _session_query(self, session_id: int, tenant_id: int | None = None):
        query = self.session.query(TillSession).filter(TillSession.id == session_id)
        if tenant_id is not None:
            query = query.join(Till, Till.id == TillSession.till_id).filter(Till.tenant_id == tenant_id)
        return query

    def get_session(self, session_id: int, tenant_id: int | None = None) -> TillSession:
        till_session = self._session_query(session_id, tenant_id).first()
        if not till_session:
            raise NotFoundError(f"Till session {session_id} not found")
        return till_session

    def cash_totals(self, till_session: TillSession) -> CashTotals:
        """Cash movements of a session, counting COMPLETED sales only."""
        cash_payments = self.session.query(
            func.coalesce(func.sum(Payment.amount_cents), 0)
        ).join(Sale, Sale.id == Payment.sale_id).filter(
            Sale.till_session_id == till_session.id,
            Sale.status == SALE_STATUS_COMPLETED,
            Payment.method == CASH_TENDER,
        ).scalar()

        change_given = self.session.query(
            func.coalesce(func.sum(Sale.change_given_cents), 0)
        ).filter(
            Sale.till_session_id == till_session.id,
            Sale.status == SALE_STATUS_COMPLETED,
        ).scalar()

        movements = dict(
            self.session.query(
                CashTransaction.transaction_type,
                func.coalesce(func.sum(CashTransaction.amount_cents), 0),
            ).filter(
                CashTransaction.till_session_id == till_session.id
            ).group_by(CashTransaction.transaction_type).all()
        )

        return CashTotals(
            opening_float_cents=till_session.opening_float_cents,
            cash_payments_cents=int(cash_payments or 0),
            change_given_cents=int(change_given or 0),
            cash_in_cents=int(movements.get(CASH_IN, 0)),
            cash_out_cents=int(movements.get(CASH_OUT, 0)),
        )

    def get_session_summary(self, session_id: int, tenant_id: int | None = None) -> dict:
        """Running totals for a session; expected cash is live while OPEN."""
        till_session = self.get_session(session_id, tenant_id)
        totals = self.cash_totals(till_session)

        return {
            "session": till_session.to_dict(),
            "totals": {
                "cash_sales_cents": totals.cash_sales_cents,
                "cash_in_cents": totals.cash_in_cents,
                "cash_out_cents": totals.cash_out_cents,
                "expected_cash_cents": totals.expected_cash_cents,
            },
        }

    def get_session_report(self, session_id: int, tenant_id: int | None = None) -> dict:
        """
        Full session report.

        Returns:
            - Session details with till and user names
            - Sales (newest first) with items and payments
            - Cash transactions (newest first)
            - Summary: sales value, change given, payments by method,
              cash in/out, expected closing balance and variance
        """
        till_session = self.get_session(session_id, tenant_id)

        sales = self.session.query(Sale).filter_by(
            till_session_id=till_session.id
        ).order_by(Sale.created_at.desc(), Sale.id.desc()).all()

        cash_transactions = self.session.query(CashTransaction).filter_by(
            till_session_id=till_session.id
        ).order_by(CashTransaction.created_at.desc(), CashTransaction.id.desc()).all()

        total_sales = 0
        total_change = 0
        payments_by_method: dict[str, int] = {}
        for sale in sales:
            if sale.status != SALE_STATUS_COMPLETED:
                continue
            total_sales += sale.total_cents
            total_change += sale.change_given_cents or 0
            for payment in sale.payments:
                payments_by_method[payment.method] = payments_by_method.get(payment.method, 0) + payment.amount_cents

        totals = self.cash_totals(till_session)

        session_data = till_session.to_dict()
        session_data["till_name"] = till_session.till.name
        session_data["user_name"] = till_session.user.name or till_session.user.username

        return {
            "session": session_data,
            "sales": [sale.to_dict(include_children=True) for sale in sales],
            "cash_transactions": [txn.to_dict() for txn in cash_transactions],
            "summary": {
                "sales_count": sum(1 for s in sales if s.status == SALE_STATUS_COMPLETED),
                "total_sales_cents": total_sales,
                "total_change_given_cents": total_change,
                "payments_by_method": payments_by_method,
                "cash_in_cents": totals.cash_in_cents,
                "cash_out_cents": totals.cash_out_cents,
                "opening_float_cents": till_session.opening_float_cents,
                "closing_balance_cents": totals.expected_cash_cents,
                "actual_closing_cash_cents": till_session.closing_cash_cents,
                "variance_cents": till_session.variance_cents,
            },
        }

    def list_closed_sessions(self, till_id: int, tenant_id: int | None = None) -> list[TillSession]:
        """Closed sessions of a till, most recently opened first."""
        till = self.get_till(till_id, tenant_id)
        return self.session.query(TillSession).filter_by(
            till_id=till.id, status=STATUS_CLOSED
        ).order_by(TillSession.opened_at.desc(), TillSession.id.desc()).all()
