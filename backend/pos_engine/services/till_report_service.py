# Overview: Till reconciliation reports across sessions of a store; read-only aggregations.

"""
Till Reporting

Every report is scoped the same way: sessions of tills in (tenant, store)
opened within [date_from, date_to], optionally narrowed to one till. Sales
are attributed to a report through their till session.

Totals only count COMPLETED sales; refunded and voided sales are reported
separately (refund totals, exceptions).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..models import CashTransaction, Payment, Product, Sale, SaleItem, Till, TillSession
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED, SALE_STATUS_VOIDED
from .till_service import STATUS_OPEN
from pos_engine.time_utils import to_utc_z


def _session_query(session, tenant_id: int, store_id: int, date_from: datetime, date_to: datetime, till_id: int | None):
    query = session.query(TillSession).join(Till, Till.id == TillSession.till_id).filter(
        Till.tenant_id == tenant_id,
        Till.store_id == store_id,
        TillSession.opened_at >= date_from,
        TillSession.opened_at <= date_to,
    )
    if till_id is not None:
        query = query.filter(TillSession.till_id == till_id)
    return query


def _session_ids(session, tenant_id, store_id, date_from, date_to, till_id=None) -> list[int]:
    rows = _session_query(session, tenant_id, store_id, date_from, date_to, till_id).with_entities(TillSession.id).all()
    return [row[0] for row in rows]


def get_dashboard_stats(
    session,
    tenant_id: int,
    store_id: int,
    date_from: datetime,
    date_to: datetime,
    till_id: int | None = None,
) -> dict:
    """Session overview plus sales and refund totals for the range."""
    sessions = _session_query(session, tenant_id, store_id, date_from, date_to, till_id).order_by(
        TillSession.opened_at.desc(), TillSession.id.desc()
    ).all()
    session_ids = [s.id for s in sessions]

    completed = (0, 0, 0, 0, 0, 0)
    refunds = (0, 0)
    if session_ids:
        completed = session.query(
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.subtotal_cents), 0),
            func.coalesce(func.sum(Sale.tax_total_cents), 0),
            func.coalesce(func.sum(Sale.discount_total_cents), 0),
            func.coalesce(func.sum(Sale.change_given_cents), 0),
            func.count(Sale.id),
        ).filter(
            Sale.till_session_id.in_(session_ids),
            Sale.status == SALE_STATUS_COMPLETED,
        ).one()

        refunds = session.query(
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.count(Sale.id),
        ).filter(
            Sale.till_session_id.in_(session_ids),
            Sale.status == SALE_STATUS_REFUNDED,
        ).one()

    total, subtotal, tax, discount, change, count = completed
    refund_total, refund_count = refunds

    return {
        "overview": {
            "session_count": len(sessions),
            "open_sessions": sum(1 for s in sessions if s.status == STATUS_OPEN),
            "sessions": [
                {
                    "id": s.id,
                    "till_name": s.till.name,
                    "staff_name": s.user.name or s.user.username,
                    "opened_at": to_utc_z(s.opened_at),
                    "closed_at": to_utc_z(s.closed_at) if s.closed_at else None,
                    "status": s.status,
                    "opening_float_cents": s.opening_float_cents,
                    "closing_cash_cents": s.closing_cash_cents,
                    "variance_cents": s.variance_cents,
                }
                for s in sessions
            ],
        },
        "sales": {
            "gross_sales_cents": int(subtotal),
            "total_collected_cents": int(total),
            "total_tax_cents": int(tax),
            "total_discount_cents": int(discount),
            "total_change_given_cents": int(change),
            "transaction_count": int(count),
            "refund_total_cents": int(refund_total),
            "refund_count": int(refund_count),
        },
    }


def get_payment_breakdown(
    session,
    tenant_id: int,
    store_id: int,
    date_from: datetime,
    date_to: datetime,
    till_id: int | None = None,
) -> list[dict]:
    """Tendered amounts per payment method; a split sale counts once per tender."""
    session_ids = _session_ids(session, tenant_id, store_id, date_from, date_to, till_id)
    if not session_ids:
        return []

    rows = session.query(
        Payment.method,
        func.coalesce(func.sum(Payment.amount_cents), 0),
        func.count(Payment.id),
    ).join(Sale, Sale.id == Payment.sale_id).filter(
        Sale.till_session_id.in_(session_ids),
        Sale.status == SALE_STATUS_COMPLETED,
    ).group_by(Payment.method).order_by(Payment.method.asc()).all()

    return [
        {"method": method, "amount_cents": int(amount), "count": int(count)}
        for method, amount, count in rows
    ]


def get_exceptions(
    session,
    tenant_id: int,
    store_id: int,
    date_from: datetime,
    date_to: datetime,
    till_id: int | None = None,
) -> dict:
    """Refunded and voided sales, and every cash movement, newest first."""
    session_ids = _session_ids(session, tenant_id, store_id, date_from, date_to, till_id)
    if not session_ids:
        return {"refunds": [], "voids": [], "cash_events": []}

    def _sales_with_status(status):
        return session.query(Sale).filter(
            Sale.till_session_id.in_(session_ids),
            Sale.status == status,
        ).order_by(Sale.created_at.desc(), Sale.id.desc()).all()

    cash_events = session.query(CashTransaction).filter(
        CashTransaction.till_session_id.in_(session_ids)
    ).order_by(CashTransaction.created_at.desc(), CashTransaction.id.desc()).all()

    return {
        "refunds": [s.to_dict() for s in _sales_with_status(SALE_STATUS_REFUNDED)],
        "voids": [s.to_dict() for s in _sales_with_status(SALE_STATUS_VOIDED)],
        "cash_events": [c.to_dict() for c in cash_events],
    }


def get_inventory_impact(
    session,
    tenant_id: int,
    store_id: int,
    date_from: datetime,
    date_to: datetime,
    till_id: int | None = None,
) -> list[dict]:
    """Quantity sold per product over COMPLETED sales, highest first."""
    session_ids = _session_ids(session, tenant_id, store_id, date_from, date_to, till_id)
    if not session_ids:
        return []

    rows = session.query(
        SaleItem.product_id,
        Product.name,
        Product.sku,
        func.sum(SaleItem.quantity),
    ).join(Sale, Sale.id == SaleItem.sale_id).outerjoin(
        Product, Product.id == SaleItem.product_id
    ).filter(
        Sale.till_session_id.in_(session_ids),
        Sale.status == SALE_STATUS_COMPLETED,
    ).group_by(SaleItem.product_id, Product.name, Product.sku).all()

    results = [
        {
            "product_id": product_id,
            "name": name or "Unknown Product",
            "sku": sku or "N/A",
            "quantity_sold": int(quantity or 0),
        }
        for product_id, name, sku, quantity in rows
    ]
    results.sort(key=lambda r: (-r["quantity_sold"], r["product_id"]))
    return results
