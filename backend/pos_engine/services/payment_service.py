# Overview: Payment reconciliation for sales; validates tendered amounts against the computed total.

"""
Payment Reconciler

- Accepts either a list of tenders (split payment) or a legacy single
  method, which is synthesized as one payment of exactly the total.
- The sale fails if the tendered total is short of the final total by more
  than the tolerance (1 cent by default).
- Overpayment is allowed and is returned as change.
- Summary method is SPLIT when more than one tender is used.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InsufficientPaymentError

# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

TENDER_CASH = "CASH"
TENDER_CARD = "CARD"
TENDER_BANK_TRANSFER = "BANK_TRANSFER"
TENDER_SPLIT = "SPLIT"

VALID_TENDER_TYPES = [
    TENDER_CASH,
    TENDER_CARD,
    TENDER_BANK_TRANSFER,
]


@dataclass(frozen=True)
class Tender:
    method: str
    amount_cents: int
    reference: str | None = None


@dataclass(frozen=True)
class PaymentPlan:
    tenders: tuple
    total_paid_cents: int
    change_cents: int
    summary_method: str


def reconcile_payments(
    total_cents: int,
    *,
    tenders: list[Tender] | None = None,
    payment_method: str | None = None,
    tolerance_cents: int = 1,
) -> PaymentPlan:
    """
    Validate the tender set against the sale total.

    Raises:
        InsufficientPaymentError: If tendered total < total - tolerance
    """
    if not tenders:
        tenders = [Tender(method=payment_method or TENDER_CASH, amount_cents=total_cents)]

    total_paid = sum(t.amount_cents for t in tenders)
    if total_paid < total_cents - tolerance_cents:
        raise InsufficientPaymentError(
            f"Insufficient payment. Total: {total_cents / 100:.2f}, Paid: {total_paid / 100:.2f}",
            details={"total_cents": total_cents, "paid_cents": total_paid},
        )

    summary = TENDER_SPLIT if len(tenders) > 1 else tenders[0].method

    return PaymentPlan(
        tenders=tuple(tenders),
        total_paid_cents=total_paid,
        change_cents=max(0, total_paid - total_cents),
        summary_method=summary,
    )
