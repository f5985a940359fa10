# Overview: Flask API routes for tills and till sessions; parses input and returns JSON responses.

# backend/pos_engine/routes/tills.py
"""
Till Management API Routes

DESIGN:
- Till CRUD (delete refused once a till has session history)
- Session lifecycle: open -> close (immutable once closed)
- Cash in / cash out against an open session
- Session summary, full report and closed-session history
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_identity, require_store
from ..services.errors import PosError
from ..services.till_service import TillService
from ..validation import (
    ValidationError,
    parse_cash_transaction_request,
    parse_close_session_request,
    parse_open_session_request,
)


tills_bp = Blueprint("tills", __name__, url_prefix="/api/tills")


def _till_service() -> TillService:
    return TillService(db.session)


# =============================================================================
# TILL MANAGEMENT
# =============================================================================

@tills_bp.post("/")
@tills_bp.post("")
@require_identity
@require_store
def create_till_route():
    """
    Create a till in the caller's store.

    Request body:
    {
        "name": "Front Counter"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        till = _till_service().create_till(g.tenant_id, g.store_id, data.get("name"))
        return jsonify({"till": till.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create till")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.get("/")
@tills_bp.get("")
@require_identity
def list_tills_route():
    """List tills (with their open session) for the caller's store, or the whole tenant."""
    store_id = request.args.get("store_id", type=int) or g.store_id
    tills = _till_service().list_tills(g.tenant_id, store_id=store_id)
    return jsonify({"tills": tills}), 200


@tills_bp.patch("/<int:till_id>")
@require_identity
def rename_till_route(till_id: int):
    try:
        data = request.get_json(silent=True) or {}
        till = _till_service().rename_till(till_id, data.get("name"), tenant_id=g.tenant_id)
        return jsonify({"till": till.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to rename till")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.delete("/<int:till_id>")
@require_identity
def delete_till_route(till_id: int):
    try:
        _till_service().delete_till(till_id, tenant_id=g.tenant_id)
        return jsonify({"deleted": True}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete till")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.get("/<int:till_id>/sessions")
@require_identity
def list_closed_sessions_route(till_id: int):
    """Closed session history for a till, newest first."""
    try:
        sessions = _till_service().list_closed_sessions(till_id, tenant_id=g.tenant_id)
        results = []
        for till_session in sessions:
            data = till_session.to_dict()
            data["user_name"] = till_session.user.name or till_session.user.username
            results.append(data)
        return jsonify({"sessions": results}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.http_status


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@tills_bp.post("/<int:till_id>/open")
@require_identity
def open_session_route(till_id: int):
    """
    Open a session on a till for the calling user.

    Request body:
    {
        "opening_float_cents": 10000
    }
    """
    try:
        open_request = parse_open_session_request(
            request.get_json(silent=True), till_id=till_id, user_id=g.user_id
        )
        till_session = _till_service().open_session(
            open_request.till_id,
            open_request.user_id,
            open_request.opening_float_cents,
            tenant_id=g.tenant_id,
        )
        return jsonify({"session": till_session.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to open till session")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.post("/sessions/<int:session_id>/close")
@require_identity
def close_session_route(session_id: int):
    """
    Close a session with the counted cash.

    Request body:
    {
        "closing_cash_cents": 12345
    }
    """
    try:
        close_request = parse_close_session_request(request.get_json(silent=True), session_id=session_id)
        till_session = _till_service().close_session(
            close_request.session_id,
            close_request.closing_cash_cents,
            tenant_id=g.tenant_id,
        )
        return jsonify({"session": till_session.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close till session")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.post("/sessions/<int:session_id>/cash")
@require_identity
def cash_transaction_route(session_id: int):
    """
    Record cash in / cash out.

    Request body:
    {
        "type": "CASH_OUT",
        "amount_cents": 5000,
        "reason": "Drop to safe"   (optional)
    }
    """
    try:
        cash_request = parse_cash_transaction_request(
            request.get_json(silent=True), session_id=session_id, user_id=g.user_id
        )
        txn = _till_service().record_cash_transaction(
            cash_request.till_session_id,
            cash_request.transaction_type,
            cash_request.amount_cents,
            cash_request.reason,
            cash_request.user_id,
            tenant_id=g.tenant_id,
        )
        return jsonify({"cash_transaction": txn.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record cash transaction")
        return jsonify({"error": "Internal server error"}), 500


@tills_bp.get("/sessions/active")
@require_identity
def active_session_route():
    """The calling user's open session (in the caller's store when X-Store-Id is set)."""
    till_session = _till_service().get_active_session(g.user_id, store_id=g.store_id)
    return jsonify({"session": till_session.to_dict() if till_session else None}), 200


@tills_bp.get("/sessions/<int:session_id>/summary")
@require_identity
def session_summary_route(session_id: int):
    try:
        return jsonify(_till_service().get_session_summary(session_id, tenant_id=g.tenant_id)), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status


@tills_bp.get("/sessions/<int:session_id>/report")
@require_identity
def session_report_route(session_id: int):
    try:
        return jsonify(_till_service().get_session_report(session_id, tenant_id=g.tenant_id)), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.http_status
