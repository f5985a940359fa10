# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

TENANT_HEADER = "X-Tenant-Id"
STORE_HEADER = "X-Store-Id"
USER_HEADER = "X-User-Id"


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw.strip())


def require_identity(f):
    """
    Require the caller identity resolved by the upstream identity layer.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: Tenant scope for every query - REQUIRED
    - g.user_id: Acting staff member - REQUIRED
    - g.store_id: Store the terminal belongs to (may be None for tenant-level calls)

    Returns 401 if tenant or user headers are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int(TENANT_HEADER)
        user_id = _header_int(USER_HEADER)

        if tenant_id is None or user_id is None:
            return jsonify({"error": f"{TENANT_HEADER} and {USER_HEADER} headers required"}), 401

        g.tenant_id = tenant_id
        g.user_id = user_id
        g.store_id = _header_int(STORE_HEADER)

        return f(*args, **kwargs)

    return decorated_function


def require_store(f):
    """Require X-Store-Id on top of require_identity."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if getattr(g, "store_id", None) is None:
            return jsonify({"error": f"{STORE_HEADER} header required"}), 400
        return f(*args, **kwargs)

    return decorated_function
