"""Loyalty redemption and accrual tests."""

from decimal import Decimal

import pytest

from pos_engine.services.errors import InsufficientPointsError
from pos_engine.services.loyalty_service import (
    accrue_points,
    points_for_amount,
    redeem_points,
    redemption_value_cents,
)


class TestLoyaltyMath:
    def test_redemption_value(self):
        assert redemption_value_cents(200, Decimal("0.10")) == 2000
        assert redemption_value_cents(3, Decimal("0.015")) == 5  # 4.5 cents rounds half-up

    def test_points_are_floored(self):
        assert points_for_amount(9999, Decimal("1")) == 99
        assert points_for_amount(1000, Decimal("1.5")) == 15
        assert points_for_amount(0, Decimal("1")) == 0


class TestCustomerBalance:
    def test_redeem_debits_balance(self, make_customer):
        customer = make_customer(points=500)

        value = redeem_points(customer, 200, Decimal("0.10"))

        assert value == 2000
        assert customer.loyalty_points == 300

    def test_redeem_more_than_balance(self, make_customer):
        customer = make_customer(points=10)

        with pytest.raises(InsufficientPointsError) as exc_info:
            redeem_points(customer, 11, Decimal("0.10"))

        assert exc_info.value.details == {"available": 10, "requested": 11}
        assert customer.loyalty_points == 10

    def test_accrue_for_member_only(self, make_customer):
        member = make_customer(points=0, member=True)
        guest = make_customer(points=0, member=False, name="Guest")

        assert accrue_points(member, 2550, Decimal("1")) == 25
        assert member.loyalty_points == 25
        assert accrue_points(guest, 2550, Decimal("1")) == 0
        assert guest.loyalty_points == 0
