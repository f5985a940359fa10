"""
Sale transaction engine tests.

Covers pricing, discounts, tax, loyalty, payments, inventory and till
session checks, and the all-or-nothing commit.
"""

from datetime import timedelta

import pytest

from pos_engine.models import Discount, InventoryEvent, LoyaltyTransaction, Payment, Sale, SaleItem, Customer
from pos_engine.services.errors import (
    InsufficientPaymentError,
    InsufficientPointsError,
    InsufficientStockError,
    InvalidTillSessionError,
    NotFoundError,
    StoreMismatchError,
)
from pos_engine.services import loyalty_service
from pos_engine.services.inventory_service import get_quantity_on_hand
from pos_engine.services.sales_service import SalesService, SalePolicy
from pos_engine.time_utils import utcnow
from pos_engine.validation import DiscountRequest, PaymentRequest, SaleLineRequest, SaleRequest


def _sale_request(tenant, store, user, lines, **kwargs):
    kwargs.setdefault("payment_method", None if kwargs.get("payments") else "CASH")
    return SaleRequest(
        tenant_id=tenant.id,
        store_id=store.id,
        user_id=user.id,
        items=tuple(SaleLineRequest(product_id=p.id, quantity=q) for p, q in lines),
        **kwargs,
    )


class TestBasicSale:
    def test_simple_cash_sale_decrements_stock(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 2)]))

        assert sale.subtotal_cents == 2000
        assert sale.discount_total_cents == 0
        assert sale.tax_total_cents == 0
        assert sale.total_cents == 2000
        assert sale.status == "COMPLETED"
        assert get_quantity_on_hand(db_session, store.id, product.id) == 3

        events = db_session.query(InventoryEvent).filter_by(sale_id=sale.id).all()
        assert len(events) == 1
        assert events[0].event_type == "SALE"
        assert events[0].quantity == -2
        assert events[0].reason == f"Sale #{sale.id}"

    def test_items_snapshot_price_and_cost(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1250, cost_cents=600, stock=10)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 3)]))

        product.price_cents = 9999
        product.cost_cents = 1
        db_session.commit()

        item = db_session.query(SaleItem).filter_by(sale_id=sale.id).one()
        assert item.price_at_sale_cents == 1250
        assert item.cost_at_sale_cents == 600
        assert item.line_total_cents == 3750

    def test_multiple_lines_sum_into_subtotal(self, sales_service, tenant, store, cashier, make_product):
        first = make_product(price_cents=499, stock=10)
        second = make_product(price_cents=1050, stock=10)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(first, 3), (second, 2)]))

        assert sale.subtotal_cents == 499 * 3 + 1050 * 2
        assert len(sale.items) == 2

    def test_unknown_product_is_not_found(self, sales_service, tenant, store, cashier, make_product):
        product = make_product(stock=5)
        request = SaleRequest(
            tenant_id=tenant.id,
            store_id=store.id,
            user_id=cashier.id,
            items=(SaleLineRequest(product_id=product.id + 999, quantity=1),),
            payment_method="CASH",
        )

        with pytest.raises(NotFoundError):
            sales_service.process_sale(request)

    def test_other_tenants_product_is_not_found(self, db_session, sales_service, other_tenant, store, cashier, make_product):
        product = make_product(stock=5)
        request = SaleRequest(
            tenant_id=other_tenant.id,
            store_id=store.id,
            user_id=cashier.id,
            items=(SaleLineRequest(product_id=product.id, quantity=1),),
            payment_method="CASH",
        )

        with pytest.raises(NotFoundError):
            sales_service.process_sale(request)
        assert get_quantity_on_hand(db_session, store.id, product.id) == 5


class TestInventoryGuard:
    def test_insufficient_stock_fails_and_leaves_stock(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=1, name="Coffee Beans")

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 2)]))

        assert str(exc_info.value) == 'Insufficient stock for "Coffee Beans". Available: 1, Requested: 2'
        assert exc_info.value.details["available"] == 1
        assert get_quantity_on_hand(db_session, store.id, product.id) == 1
        assert db_session.query(Sale).count() == 0

    def test_repeated_product_lines_are_checked_together(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=3, name="Tea")

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 2), (product, 2)]))

        assert str(exc_info.value) == 'Insufficient stock for "Tea". Available: 3, Requested: 4'
        assert get_quantity_on_hand(db_session, store.id, product.id) == 3
        assert db_session.query(Sale).count() == 0

    def test_repeated_product_lines_within_stock(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 2), (product, 3)]))

        assert len(sale.items) == 2
        assert sale.subtotal_cents == 5000
        assert get_quantity_on_hand(db_session, store.id, product.id) == 0

    def test_missing_inventory_row_counts_as_zero(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000)

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert exc_info.value.available == 0

    def test_failure_on_later_line_rolls_back_earlier_lines(self, db_session, sales_service, tenant, store, cashier, make_product):
        plenty = make_product(stock=10)
        scarce = make_product(stock=1)

        with pytest.raises(InsufficientStockError):
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(plenty, 4), (scarce, 2)]))

        assert get_quantity_on_hand(db_session, store.id, plenty.id) == 10
        assert get_quantity_on_hand(db_session, store.id, scarce.id) == 1
        assert db_session.query(InventoryEvent).filter_by(event_type="SALE").count() == 0
        assert db_session.query(Payment).count() == 0

    def test_stock_is_per_store(self, db_session, sales_service, tenant, store, second_store, cashier, make_product):
        product = make_product(stock=5, store_id=second_store.id)

        with pytest.raises(InsufficientStockError):
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert get_quantity_on_hand(db_session, second_store.id, product.id) == 5

    def test_negative_stock_policy_allows_overselling(self, db_session, tenant, store, cashier, make_product):
        product = make_product(stock=1)
        service = SalesService(db_session, SalePolicy(allow_negative_stock=True))

        service.process_sale(_sale_request(tenant, store, cashier, [(product, 3)]))

        assert get_quantity_on_hand(db_session, store.id, product.id) == -2


class TestDiscountsAndTax:
    def test_percentage_discount_then_tax(self, sales_service, tenant, store, cashier, make_product, make_tax):
        product = make_product(price_cents=10000, stock=5)
        make_tax(750)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)],
            discount=DiscountRequest(type="PERCENTAGE", value=1000),
        ))

        assert sale.subtotal_cents == 10000
        assert sale.discount_total_cents == 1000
        assert sale.tax_total_cents == 675
        assert sale.total_cents == 9675

    def test_active_tax_rates_are_summed_flat(self, sales_service, tenant, store, cashier, make_product, make_tax):
        product = make_product(price_cents=10000, stock=5)
        make_tax(500, name="State")
        make_tax(250, name="City")
        make_tax(900, is_active=False, name="Retired")

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert sale.tax_total_cents == 750
        assert sale.total_cents == 10750

    def test_stored_discount_by_id(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=5000, stock=5)
        discount = Discount(tenant_id=tenant.id, name="Ten off", discount_type="PERCENTAGE", value=1000)
        db_session.add(discount)
        db_session.commit()

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], discount=DiscountRequest(discount_id=discount.id),
        ))

        assert sale.discount_total_cents == 500

    def test_expired_discount_is_ignored(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=5000, stock=5)
        discount = Discount(
            tenant_id=tenant.id,
            name="Last week",
            discount_type="FIXED",
            value=1000,
            end_date=utcnow() - timedelta(days=1),
        )
        db_session.add(discount)
        db_session.commit()

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], discount=DiscountRequest(discount_id=discount.id),
        ))

        assert sale.discount_total_cents == 0
        assert sale.total_cents == 5000

    def test_category_discount_only_hits_matching_lines(
        self, db_session, sales_service, tenant, store, cashier, make_product, category
    ):
        from pos_engine.models import Category

        other = Category(tenant_id=tenant.id, name="Hardware")
        db_session.add(other)
        db_session.commit()

        grocery = make_product(price_cents=2000, stock=5)
        hammer = make_product(price_cents=3000, stock=5, category_id=other.id)
        discount = Discount(
            tenant_id=tenant.id,
            name="Grocery 50%",
            discount_type="PERCENTAGE",
            value=5000,
            target_type="CATEGORY",
            target_values=[category.name],
        )
        db_session.add(discount)
        db_session.commit()

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(grocery, 1), (hammer, 1)], discount=DiscountRequest(discount_id=discount.id),
        ))

        assert sale.subtotal_cents == 5000
        assert sale.discount_total_cents == 1000

    def test_fixed_discount_capped_at_eligible_subtotal(
        self, db_session, sales_service, tenant, store, cashier, make_product
    ):
        cheap = make_product(price_cents=300, stock=5)
        other = make_product(price_cents=5000, stock=5)
        discount = Discount(
            tenant_id=tenant.id,
            name="5 off cheap item",
            discount_type="FIXED",
            value=500,
            target_type="PRODUCT",
            target_values=[cheap.id],
        )
        db_session.add(discount)
        db_session.commit()

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(cheap, 1), (other, 1)], discount=DiscountRequest(discount_id=discount.id),
        ))

        assert sale.discount_total_cents == 300
        assert sale.total_cents == 5000

    def test_totals_invariant(self, sales_service, tenant, store, cashier, make_product, make_tax):
        product = make_product(price_cents=3333, stock=10)
        make_tax(825)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 3)],
            discount=DiscountRequest(type="FIXED", value=1234),
        ))

        assert 0 <= sale.discount_total_cents <= sale.subtotal_cents
        assert sale.total_cents == sale.subtotal_cents - sale.discount_total_cents + sale.tax_total_cents


class TestLoyalty:
    def test_redeem_points_adds_to_discount(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer):
        product = make_product(price_cents=10000, stock=5)
        customer = make_customer(points=500, member=False)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], customer_id=customer.id, redeem_points=200,
        ))

        assert sale.discount_total_cents == 2000
        assert sale.loyalty_points_used == 200
        assert db_session.get(Customer, customer.id).loyalty_points == 300

        movement = db_session.query(LoyaltyTransaction).filter_by(sale_id=sale.id).one()
        assert movement.transaction_type == "REDEEM"
        assert movement.points == -200

    def test_member_earns_on_post_discount_amount(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer, make_tax):
        product = make_product(price_cents=10000, stock=5)
        make_tax(1000)
        customer = make_customer(points=500, member=True)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], customer_id=customer.id, redeem_points=200,
        ))

        # 100.00 - 20.00 redeemed = 80.00 taxable -> 80 points at 1 point per unit
        assert sale.loyalty_points_earned == 80
        assert db_session.get(Customer, customer.id).loyalty_points == 380
        types = sorted(t.transaction_type for t in db_session.query(LoyaltyTransaction).filter_by(sale_id=sale.id))
        assert types == ["EARN", "REDEEM"]

    def test_non_member_does_not_earn(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer):
        product = make_product(price_cents=10000, stock=5)
        customer = make_customer(points=0, member=False)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)], customer_id=customer.id))

        assert sale.loyalty_points_earned == 0
        assert db_session.get(Customer, customer.id).loyalty_points == 0

    def test_insufficient_points_fails_whole_sale(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer):
        product = make_product(price_cents=10000, stock=5)
        customer = make_customer(points=50)

        with pytest.raises(InsufficientPointsError):
            sales_service.process_sale(_sale_request(
                tenant, store, cashier, [(product, 1)], customer_id=customer.id, redeem_points=200,
            ))

        assert db_session.get(Customer, customer.id).loyalty_points == 50
        assert get_quantity_on_hand(db_session, store.id, product.id) == 5
        assert db_session.query(Sale).count() == 0

    def test_redeem_without_customer_fails(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=10000, stock=5)

        with pytest.raises(NotFoundError):
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)], redeem_points=10))

        assert get_quantity_on_hand(db_session, store.id, product.id) == 5

    def test_redemption_larger_than_subtotal_is_capped(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer):
        product = make_product(price_cents=1000, stock=5)
        customer = make_customer(points=500, member=True)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], customer_id=customer.id, redeem_points=200,
        ))

        assert sale.discount_total_cents == 1000
        assert sale.total_cents == 0
        assert sale.loyalty_points_earned == 0
        assert db_session.get(Customer, customer.id).loyalty_points == 300

    def test_walk_in_customer_used_when_none_given(self, db_session, sales_service, tenant, store, cashier, make_product, make_customer):
        product = make_product(price_cents=1000, stock=5)
        walk_in = make_customer(code="WALKIN", member=False, name="Walk-in Customer")

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert sale.customer_id == walk_in.id
        assert sale.loyalty_points_earned == 0

    def test_no_walk_in_customer_leaves_sale_anonymous(self, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert sale.customer_id is None

    def test_unknown_customer_is_not_found(self, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)

        with pytest.raises(NotFoundError):
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)], customer_id=987654))

    def test_walk_in_sale_does_not_lock_customer(self, monkeypatch, sales_service, tenant, store, cashier, make_product, make_customer):
        locks = _record_customer_locks(monkeypatch)
        product = make_product(price_cents=1000, stock=5)
        walk_in = make_customer(code="WALKIN", member=False, name="Walk-in Customer")

        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert sale.customer_id == walk_in.id
        assert locks == []

    def test_member_and_redeeming_customers_are_locked(self, monkeypatch, sales_service, tenant, store, cashier, make_product, make_customer):
        locks = _record_customer_locks(monkeypatch)
        product = make_product(price_cents=1000, stock=5)
        member = make_customer(points=0, member=True, name="Member")
        redeemer = make_customer(points=50, member=False, name="Redeemer")

        sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)], customer_id=member.id))
        sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], customer_id=redeemer.id, redeem_points=10,
        ))

        assert len(locks) == 2


def _record_customer_locks(monkeypatch):
    locks = []
    original = loyalty_service.lock_for_update

    def recording_lock(query, **kwargs):
        locks.append(query)
        return original(query, **kwargs)

    monkeypatch.setattr(loyalty_service, "lock_for_update", recording_lock)
    return locks


class TestPayments:
    def test_split_tender_with_change(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=4500, stock=5)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)],
            payments=(PaymentRequest("CASH", 3000), PaymentRequest("CARD", 2000, "AUTH-1")),
        ))

        assert sale.total_cents == 4500
        assert sale.change_given_cents == 500
        assert sale.payment_method == "SPLIT"
        assert sorted((p.method, p.amount_cents) for p in sale.payments) == [("CARD", 2000), ("CASH", 3000)]

    def test_underpayment_fails_without_side_effects(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=4500, stock=5)

        with pytest.raises(InsufficientPaymentError):
            sales_service.process_sale(_sale_request(
                tenant, store, cashier, [(product, 1)],
                payments=(PaymentRequest("CASH", 4000),),
            ))

        assert get_quantity_on_hand(db_session, store.id, product.id) == 5
        assert db_session.query(Sale).count() == 0
        assert db_session.query(Payment).count() == 0

    def test_one_cent_short_is_within_tolerance(self, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=4500, stock=5)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], payments=(PaymentRequest("CARD", 4499),),
        ))

        assert sale.change_given_cents == 0
        assert sale.payment_method == "CARD"

    def test_legacy_method_synthesizes_exact_payment(self, sales_service, tenant, store, cashier, make_product, make_tax):
        product = make_product(price_cents=2000, stock=5)
        make_tax(1000)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], payment_method="BANK_TRANSFER",
        ))

        assert sale.payment_method == "BANK_TRANSFER"
        assert len(sale.payments) == 1
        assert sale.payments[0].amount_cents == sale.total_cents == 2200
        assert sale.change_given_cents == 0


class TestTillSessionChecks:
    def test_sale_attached_to_open_session(self, sales_service, till_service, tenant, store, cashier, till, make_product):
        product = make_product(price_cents=1000, stock=5)
        till_session = till_service.open_session(till.id, cashier.id, 5000)

        sale = sales_service.process_sale(_sale_request(
            tenant, store, cashier, [(product, 1)], till_session_id=till_session.id,
        ))

        assert sale.till_session_id == till_session.id

    def test_unknown_session_is_invalid(self, db_session, sales_service, tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)

        with pytest.raises(InvalidTillSessionError):
            sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)], till_session_id=424242))

        assert get_quantity_on_hand(db_session, store.id, product.id) == 5

    def test_closed_session_is_invalid(self, sales_service, till_service, tenant, store, cashier, till, make_product):
        product = make_product(price_cents=1000, stock=5)
        till_session = till_service.open_session(till.id, cashier.id, 0)
        till_service.close_session(till_session.id, 0)

        with pytest.raises(InvalidTillSessionError):
            sales_service.process_sale(_sale_request(
                tenant, store, cashier, [(product, 1)], till_session_id=till_session.id,
            ))

    def test_session_from_another_store_is_rejected(
        self, db_session, sales_service, till_service, tenant, store, second_store, cashier, make_product
    ):
        product = make_product(price_cents=1000, stock=5)
        remote_till = till_service.create_till(tenant.id, second_store.id, "Remote")
        till_session = till_service.open_session(remote_till.id, cashier.id, 0)

        with pytest.raises(StoreMismatchError):
            sales_service.process_sale(_sale_request(
                tenant, store, cashier, [(product, 1)], till_session_id=till_session.id,
            ))

        assert get_quantity_on_hand(db_session, store.id, product.id) == 5


class TestReads:
    def test_get_sale_is_tenant_scoped(self, sales_service, tenant, other_tenant, store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)
        sale = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))

        assert sales_service.get_sale(tenant.id, sale.id).id == sale.id
        with pytest.raises(NotFoundError):
            sales_service.get_sale(other_tenant.id, sale.id)

    def test_list_sales_filters_by_store(self, sales_service, tenant, store, second_store, cashier, make_product):
        product = make_product(price_cents=1000, stock=5)
        make_stock = make_product(price_cents=500, stock=5, store_id=second_store.id)
        here = sales_service.process_sale(_sale_request(tenant, store, cashier, [(product, 1)]))
        there = sales_service.process_sale(_sale_request(tenant, second_store, cashier, [(make_stock, 1)]))

        assert [s.id for s in sales_service.list_sales(tenant.id, store_id=store.id)] == [here.id]
        assert {s.id for s in sales_service.list_sales(tenant.id)} == {here.id, there.id}
