# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/pos_engine/routes/sales.py
"""
Sales API Routes

A sale is posted in one call: cart, tenders, optional discount, optional
loyalty redemption and optional till session. The engine either commits
everything or nothing.

Identity (tenant, store, user) comes from the X-Tenant-Id / X-Store-Id /
X-User-Id headers set by the upstream identity layer.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_identity, require_store
from ..services.errors import PosError
from ..services.sales_service import SalesService, SalePolicy
from ..validation import ValidationError, parse_sale_request


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sales_service() -> SalesService:
    return SalesService(db.session, SalePolicy.from_config(current_app.config))


@sales_bp.post("/")
@sales_bp.post("")
@require_identity
@require_store
def create_sale_route():
    """
    Post a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payments": [{"method": "CASH", "amount_cents": 1000}],   (or "payment_method": "CARD")
        "customer_id": 5,                                          (optional)
        "discount": {"id": 3} | {"type": "PERCENTAGE", "value": 1000},  (optional, value in bps or cents)
        "till_session_id": 7,                                      (optional)
        "redeem_points": 100                                       (optional)
    }
    """
    try:
        sale_request = parse_sale_request(
            request.get_json(silent=True),
            tenant_id=g.tenant_id,
            store_id=g.store_id,
            user_id=g.user_id,
        )
        sale = _sales_service().process_sale(sale_request)
        return jsonify({"sale": sale.to_dict(include_children=True)}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to post sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
@sales_bp.get("")
@require_identity
def list_sales_route():
    """
    List recent sales for the tenant.

    Query params:
    - store_id: Restrict to one store (defaults to X-Store-Id when present)
    - limit: Max rows (default 200)
    """
    store_id = request.args.get("store_id", type=int) or g.store_id
    limit = max(1, min(request.args.get("limit", default=200, type=int), 1000))

    sales = _sales_service().list_sales(g.tenant_id, store_id=store_id, limit=limit)
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_identity
def get_sale_route(sale_id: int):
    """Get one sale with its items and payments."""
    try:
        sale = _sales_service().get_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict(include_children=True)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
