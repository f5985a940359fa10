# Overview: Sale transaction engine; prices a cart and commits the sale atomically.

"""
Sale Transaction Engine

Turns a cart, a tender set, an optional discount and an optional loyalty
redemption into one Sale, committed atomically with its items, payments,
inventory decrements, inventory events and loyalty movements.

ORDER OF OPERATIONS (each stage feeds the next):
1. Till session validation (when a session id is given)
2. Discount resolution (an unusable discount degrades to "no discount")
3. Line pricing + inventory guard
4. Discount amount (+ loyalty redemption), capped at the subtotal
5. Tax on the post-discount amount
6. Loyalty accrual on the post-discount amount
7. Payment reconciliation
8. Commit

Any failure rolls back the whole unit: no partial stock decrement, payment
row or loyalty movement survives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from ..models import Product, Sale, SaleItem, Payment
from ..models.sales import SALE_STATUS_COMPLETED
from ..money import apply_bps
from ..validation import SaleRequest
from pos_engine.time_utils import utcnow
from .concurrency import run_with_retry
from .discount_service import DiscountDescriptor, compute_discount_cents, is_line_eligible, resolve_discount
from .errors import NotFoundError
from .inventory_service import EVENT_SALE, record_event, reserve_stock
from .loyalty_service import (
    accrue_points,
    find_walk_in_customer,
    load_customer,
    record_loyalty_movements,
    redeem_points,
)
from .payment_service import Tender, reconcile_payments
from .rates_service import get_loyalty_config, get_total_tax_rate_bps
from .till_service import TillService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalePolicy:
    payment_tolerance_cents: int = 1
    allow_negative_stock: bool = False
    walk_in_customer_code: str | None = "WALKIN"
    retry_attempts: int = 3

    @classmethod
    def from_config(cls, config: Mapping) -> "SalePolicy":
        return cls(
            payment_tolerance_cents=int(config.get("POS_PAYMENT_TOLERANCE_CENTS", 1)),
            allow_negative_stock=bool(config.get("POS_ALLOW_NEGATIVE_STOCK", False)),
            walk_in_customer_code=config.get("POS_WALK_IN_CUSTOMER_CODE", "WALKIN"),
            retry_attempts=int(config.get("POS_RETRY_ATTEMPTS", 3)),
        )


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    price_at_sale_cents: int
    cost_at_sale_cents: int
    line_total_cents: int
    eligible: bool


@dataclass(frozen=True)
class PricedCart:
    lines: tuple
    subtotal_cents: int
    eligible_subtotal_cents: int


class SalesService:
    """Sale posting and sale reads, bound to one database session."""

    def __init__(self, session, policy: SalePolicy | None = None):
        self.session = session
        self.policy = policy or SalePolicy()

    # =========================================================================
    # POSTING
    # =========================================================================

    def process_sale(self, request: SaleRequest) -> Sale:
        """
        Price, validate and commit a sale in one transaction.

        Raises:
            NotFoundError: Unknown product or customer
            InsufficientStockError: A line exceeds available stock
            InvalidTillSessionError / StoreMismatchError: Bad till session reference
            InsufficientPointsError: Redemption exceeds the customer's balance
            InsufficientPaymentError: Tendered total short of the final total
        """
        def _op():
            sale = self._post_sale(request)
            self.session.commit()
            return sale

        sale = run_with_retry(self.session, _op, attempts=self.policy.retry_attempts)
        logger.info(
            "Sale %s committed tenant=%s store=%s total_cents=%s method=%s",
            sale.id, sale.tenant_id, sale.store_id, sale.total_cents, sale.payment_method,
        )
        return sale

    def _post_sale(self, request: SaleRequest) -> Sale:
        session = self.session

        customer_id = request.customer_id
        if customer_id is None and self.policy.walk_in_customer_code:
            walk_in = find_walk_in_customer(session, request.tenant_id, self.policy.walk_in_customer_code)
            if walk_in:
                customer_id = walk_in.id

        if request.till_session_id is not None:
            TillService(session).validate_for_sale(request.till_session_id, request.store_id)

        descriptor = self._resolve_discount(request)
        cart = self._price_lines(request, descriptor)

        discount_cents = compute_discount_cents(descriptor, cart.eligible_subtotal_cents)

        customer = None
        loyalty = None
        if customer_id is not None:
            customer = load_customer(session, request.tenant_id, customer_id)
            if request.redeem_points > 0 or customer.is_loyalty_member:
                customer = load_customer(session, request.tenant_id, customer_id, for_update=True)
            loyalty = get_loyalty_config(session, request.tenant_id)

        points_used = 0
        if request.redeem_points > 0:
            if customer is None:
                raise NotFoundError("Customer required to redeem points")
            discount_cents += redeem_points(customer, request.redeem_points, loyalty.redeem_rate)
            points_used = request.redeem_points

        discount_cents = min(discount_cents, cart.subtotal_cents)
        taxable_cents = cart.subtotal_cents - discount_cents

        points_earned = 0
        if customer is not None:
            points_earned = accrue_points(customer, taxable_cents, loyalty.earn_rate)

        tax_cents = apply_bps(taxable_cents, get_total_tax_rate_bps(session, request.tenant_id))
        total_cents = taxable_cents + tax_cents

        plan = reconcile_payments(
            total_cents,
            tenders=[Tender(p.method, p.amount_cents, p.reference) for p in request.payments],
            payment_method=request.payment_method,
            tolerance_cents=self.policy.payment_tolerance_cents,
        )

        sale = Sale(
            tenant_id=request.tenant_id,
            store_id=request.store_id,
            user_id=request.user_id,
            customer_id=customer_id,
            till_session_id=request.till_session_id,
            subtotal_cents=cart.subtotal_cents,
            discount_total_cents=discount_cents,
            tax_total_cents=tax_cents,
            total_cents=total_cents,
            change_given_cents=plan.change_cents,
            payment_method=plan.summary_method,
            status=SALE_STATUS_COMPLETED,
            loyalty_points_used=points_used,
            loyalty_points_earned=points_earned,
            created_at=utcnow(),
        )
        session.add(sale)
        session.flush()

        for tender in plan.tenders:
            session.add(Payment(
                sale_id=sale.id,
                method=tender.method,
                amount_cents=tender.amount_cents,
                reference=tender.reference,
                created_at=sale.created_at,
            ))

        for line in cart.lines:
            session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                price_at_sale_cents=line.price_at_sale_cents,
                cost_at_sale_cents=line.cost_at_sale_cents,
            ))
            record_event(
                session,
                store_id=request.store_id,
                product_id=line.product_id,
                event_type=EVENT_SALE,
                quantity=-line.quantity,
                user_id=request.user_id,
                reason=f"Sale #{sale.id}",
                sale_id=sale.id,
            )

        if customer is not None:
            record_loyalty_movements(session, customer, sale.id, points_used, points_earned)

        session.flush()
        return sale

    def _resolve_discount(self, request: SaleRequest) -> DiscountDescriptor | None:
        if request.discount is None:
            return None
        return resolve_discount(
            self.session,
            request.tenant_id,
            discount_id=request.discount.discount_id,
            manual_type=request.discount.type,
            manual_value=request.discount.value,
        )

    def _price_lines(self, request: SaleRequest, descriptor: DiscountDescriptor | None) -> PricedCart:
        """Snapshot price/cost per line, then take the stock once per product."""
        lines = []
        subtotal = 0
        eligible_subtotal = 0
        requested = {}

        for item in request.items:
            product = self.session.query(Product).filter_by(
                id=item.product_id, tenant_id=request.tenant_id
            ).first()
            if not product:
                raise NotFoundError(f"Product {item.product_id} not found")

            line_total = product.price_cents * item.quantity
            eligible = is_line_eligible(descriptor, product)

            subtotal += line_total
            if eligible:
                eligible_subtotal += line_total

            lines.append(PricedLine(
                product_id=product.id,
                quantity=item.quantity,
                price_at_sale_cents=product.price_cents,
                cost_at_sale_cents=product.cost_cents or 0,
                line_total_cents=line_total,
                eligible=eligible,
            ))
            product_entry = requested.setdefault(product.id, [product, 0])
            product_entry[1] += item.quantity

        # Repeated lines for one product are checked against stock as a single quantity
        for product, quantity in requested.values():
            reserve_stock(
                self.session,
                store_id=request.store_id,
                product=product,
                quantity=quantity,
                allow_negative=self.policy.allow_negative_stock,
            )

        return PricedCart(
            lines=tuple(lines),
            subtotal_cents=subtotal,
            eligible_subtotal_cents=eligible_subtotal,
        )

    # =========================================================================
    # READS
    # =========================================================================

    def get_sale(self, tenant_id: int, sale_id: int) -> Sale:
        sale = self.session.query(Sale).filter_by(id=sale_id, tenant_id=tenant_id).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        return sale

    def list_sales(self, tenant_id: int, store_id: int | None = None, limit: int = 200) -> list[Sale]:
        query = self.session.query(Sale).filter_by(tenant_id=tenant_id)
        if store_id is not None:
            query = query.filter_by(store_id=store_id)
        return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
