"""
Request structs for the engine entry points.

Route handlers turn JSON bodies into these frozen dataclasses with the
parse_* functions below. The services only ever see validated values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_LINE_QUANTITY = 100_000


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PaymentRequest:
    method: str
    amount_cents: int
    reference: str | None = None


@dataclass(frozen=True)
class DiscountRequest:
    """Either a stored discount reference (discount_id) or a manual type/value."""
    discount_id: int | None = None
    type: str | None = None
    value: int | None = None


@dataclass(frozen=True)
class SaleRequest:
    tenant_id: int
    store_id: int
    user_id: int
    items: tuple
    payments: tuple = field(default_factory=tuple)
    payment_method: str | None = None
    customer_id: int | None = None
    discount: DiscountRequest | None = None
    till_session_id: int | None = None
    redeem_points: int = 0


@dataclass(frozen=True)
class OpenSessionRequest:
    till_id: int
    user_id: int
    opening_float_cents: int


@dataclass(frozen=True)
class CloseSessionRequest:
    session_id: int
    closing_cash_cents: int


@dataclass(frozen=True)
class CashTransactionRequest:
    till_session_id: int
    transaction_type: str
    amount_cents: int
    reason: str | None = None
    user_id: int | None = None


# =============================================================================
# FIELD COERCION
# =============================================================================

def coerce_int(value: Any, name: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer parsing: rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} must be <= {maximum}")
    return result


def optional_int(data: dict, key: str, **kwargs) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    return coerce_int(value, key, **kwargs)


def require_int(data: dict, key: str, **kwargs) -> int:
    if data.get(key) is None:
        raise ValidationError(f"{key} required")
    return coerce_int(data[key], key, **kwargs)


def coerce_choice(value: Any, name: str, choices: list[str]) -> str:
    if not isinstance(value, str) or value.strip().upper() not in choices:
        raise ValidationError(f"{name} must be one of {choices}")
    return value.strip().upper()


def optional_str(data: dict, key: str, max_length: int = 255) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value or None


# =============================================================================
# REQUEST PARSERS
# =============================================================================

def parse_sale_request(data: dict, *, tenant_id: int, store_id: int, user_id: int) -> SaleRequest:
    from .services.discount_service import VALID_DISCOUNT_TYPES, DISCOUNT_PERCENTAGE
    from .services.payment_service import VALID_TENDER_TYPES

    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        items.append(SaleLineRequest(
            product_id=require_int(raw, "product_id", minimum=1),
            quantity=require_int(raw, "quantity", minimum=1, maximum=MAX_LINE_QUANTITY),
        ))

    payments = []
    raw_payments = data.get("payments")
    if raw_payments is not None:
        if not isinstance(raw_payments, list):
            raise ValidationError("payments must be a list")
        for i, raw in enumerate(raw_payments):
            if not isinstance(raw, dict):
                raise ValidationError(f"payments[{i}] must be an object")
            payments.append(PaymentRequest(
                method=coerce_choice(raw.get("method"), f"payments[{i}].method", VALID_TENDER_TYPES),
                amount_cents=require_int(raw, "amount_cents", minimum=1, maximum=MAX_AMOUNT_CENTS),
                reference=optional_str(raw, "reference", max_length=128),
            ))

    payment_method = None
    if not payments:
        if data.get("payment_method") is None:
            raise ValidationError("payments or payment_method required")
        payment_method = coerce_choice(data.get("payment_method"), "payment_method", VALID_TENDER_TYPES)

    discount = None
    raw_discount = data.get("discount")
    if raw_discount is not None:
        if not isinstance(raw_discount, dict):
            raise ValidationError("discount must be an object")
        discount_id = optional_int(raw_discount, "id", minimum=1)
        if discount_id is not None:
            discount = DiscountRequest(discount_id=discount_id)
        else:
            dtype = coerce_choice(raw_discount.get("type"), "discount.type", VALID_DISCOUNT_TYPES)
            maximum = 10_000 if dtype == DISCOUNT_PERCENTAGE else MAX_AMOUNT_CENTS
            discount = DiscountRequest(
                type=dtype,
                value=require_int(raw_discount, "value", minimum=0, maximum=maximum),
            )

    return SaleRequest(
        tenant_id=tenant_id,
        store_id=store_id,
        user_id=user_id,
        items=tuple(items),
        payments=tuple(payments),
        payment_method=payment_method,
        customer_id=optional_int(data, "customer_id", minimum=1),
        discount=discount,
        till_session_id=optional_int(data, "till_session_id", minimum=1),
        redeem_points=optional_int(data, "redeem_points", minimum=0) or 0,
    )


def parse_open_session_request(data: dict, *, till_id: int, user_id: int) -> OpenSessionRequest:
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return OpenSessionRequest(
        till_id=till_id,
        user_id=user_id,
        opening_float_cents=require_int(data, "opening_float_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
    )


def parse_close_session_request(data: dict, *, session_id: int) -> CloseSessionRequest:
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return CloseSessionRequest(
        session_id=session_id,
        closing_cash_cents=require_int(data, "closing_cash_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
    )


def parse_cash_transaction_request(data: dict, *, session_id: int, user_id: int | None) -> CashTransactionRequest:
    from .services.till_service import VALID_CASH_TRANSACTION_TYPES

    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return CashTransactionRequest(
        till_session_id=session_id,
        transaction_type=coerce_choice(data.get("type"), "type", VALID_CASH_TRANSACTION_TYPES),
        amount_cents=require_int(data, "amount_cents", minimum=1, maximum=MAX_AMOUNT_CENTS),
        reason=optional_str(data, "reason"),
        user_id=user_id,
    )
