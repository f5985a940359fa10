# Overview: Flask API routes for till reconciliation reports.

# backend/pos_engine/routes/till_reports.py
"""
Till Reports API Routes

All endpoints take the same query parameters:
- from / to: ISO-8601 range on session opened_at (default: last 24 hours)
- till_id: Restrict to one till (optional)

The store comes from X-Store-Id.
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_identity, require_store
from ..services import till_report_service
from pos_engine.time_utils import parse_iso_datetime, utcnow


till_reports_bp = Blueprint("till_reports", __name__, url_prefix="/api/till-reports")


def _report_scope():
    """Parse from/to/till_id. Returns (scope, error_response)."""
    try:
        date_to = parse_iso_datetime(request.args.get("to")) or utcnow()
        date_from = parse_iso_datetime(request.args.get("from")) or (date_to - timedelta(days=1))
    except ValueError:
        return None, (jsonify({"error": "from/to must be ISO-8601 datetimes"}), 400)

    if date_from > date_to:
        return None, (jsonify({"error": "from must be before to"}), 400)

    scope = {
        "tenant_id": g.tenant_id,
        "store_id": g.store_id,
        "date_from": date_from,
        "date_to": date_to,
        "till_id": request.args.get("till_id", type=int),
    }
    return scope, None


def _run_report(report_fn, label: str):
    scope, error = _report_scope()
    if error:
        return error
    try:
        return jsonify(report_fn(db.session, **scope)), 200
    except Exception:
        current_app.logger.exception("Failed to build %s report", label)
        return jsonify({"error": "Internal server error"}), 500


@till_reports_bp.get("/dashboard")
@require_identity
@require_store
def dashboard_route():
    """Session overview, sales totals and refund totals."""
    return _run_report(till_report_service.get_dashboard_stats, "dashboard")


@till_reports_bp.get("/payments")
@require_identity
@require_store
def payment_breakdown_route():
    return _run_report(till_report_service.get_payment_breakdown, "payment breakdown")


@till_reports_bp.get("/exceptions")
@require_identity
@require_store
def exceptions_route():
    """Refunded sales, voided sales and cash events."""
    return _run_report(till_report_service.get_exceptions, "exceptions")


@till_reports_bp.get("/inventory")
@require_identity
@require_store
def inventory_impact_route():
    return _run_report(till_report_service.get_inventory_impact, "inventory impact")
