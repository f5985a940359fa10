"""
Cent-based money helpers.

All amounts are stored and computed as integer cents. Rates are applied with
Decimal arithmetic and rounded back to whole cents half-up, so totals never
accumulate binary floating point error.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

BPS_DENOMINATOR = 10_000


def round_cents(value: Decimal) -> int:
    """Round a Decimal number of cents to the nearest whole cent (half-up)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """amount x rate, with the rate expressed in basis points."""
    return round_cents(Decimal(amount_cents) * Decimal(rate_bps) / BPS_DENOMINATOR)


def cents_to_units(amount_cents: int) -> Decimal:
    return Decimal(amount_cents) / 100


def units_to_cents(amount: Decimal) -> int:
    return round_cents(Decimal(amount) * 100)


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def format_cents(amount_cents: int | None) -> str:
    if amount_cents is None:
        return "-"
    return f"{amount_cents / 100:.2f}"
