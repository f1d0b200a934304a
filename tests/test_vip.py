"""
优惠券与 VIP 订单测试
"""

import threading
from datetime import datetime, timedelta

import pytest

from backend.core import vip
from backend.db import crud
from backend.db.models import Coupon, CouponUses
from backend.exceptions import DuplicateCode, OrderNotFound, UnknownPlan, ValidationError


def assert_expiry_close(expiry: str, days: int):
    expected = datetime.now() + timedelta(days=days)
    assert abs(datetime.fromisoformat(expiry) - expected) < timedelta(minutes=1)


@pytest.fixture
def buyer(register_user):
    user, _ = register_user("buyer@example.com")
    return user


@pytest.mark.parametrize("amount, coupon_type, value, expected", [
    (60, None, 0, 60),
    (150, "discount", 50, 75),
    (60, "discount", 33, 20),
    (360, "free", 0, 0),
    (60, "gift", 10, 60),
])
def test_compute_payable(amount, coupon_type, value, expected):
    coupon = None
    if coupon_type:
        coupon = Coupon(id="c", code="C", type=coupon_type, value=value, uses=CouponUses(remaining=1))
    assert vip.compute_payable(amount, coupon) == expected


class TestPurchase:
    """下单"""

    def test_month_without_coupon(self, buyer):
        order_id, payable = vip.purchase(buyer.id, "month", "alipay")

        assert payable == 60
        order = crud.get_vip_order(order_id)
        assert order.status == "pending"
        assert order.amount == 60
        assert order.coupon_id is None
        assert crud.get_user_by_id(buyer.id).vip_level == "none"

    def test_unknown_plan(self, buyer):
        with pytest.raises(UnknownPlan):
            vip.purchase(buyer.id, "decade", "alipay")

    def test_free_coupon_pays_immediately(self, root_user, buyer):
        vip.create_coupon(root_user.id, "free", code="FREEYEAR")

        order_id, payable = vip.purchase(buyer.id, "year", "wechat", "FREEYEAR")

        assert payable == 0
        assert crud.get_vip_order(order_id).status == "paid"
        user = crud.get_user_by_id(buyer.id)
        assert user.vip_level == "year"
        assert_expiry_close(user.vip_expiry, 365)

    def test_discount_coupon(self, root_user, buyer):
        coupon = vip.create_coupon(root_user.id, "discount", 50, code="HALF")
        order_id, payable = vip.purchase(buyer.id, "season", "alipay", "HALF")
        assert payable == 75
        assert crud.get_vip_order(order_id).coupon_id == coupon.id

    def test_discount_rounds_up(self, root_user, buyer):
        vip.create_coupon(root_user.id, "discount", 33, code="ODD")
        _, payable = vip.purchase(buyer.id, "month", "alipay", "ODD")
        assert payable == 20

    def test_single_use_coupon_exhausts(self, root_user, buyer):
        vip.create_coupon(root_user.id, "discount", 50, code="ONCE", uses=1)

        _, first = vip.purchase(buyer.id, "month", "alipay", "ONCE")
        assert first == 30
        assert crud.get_coupon_by_code("ONCE").uses == CouponUses(remaining=0)

        order_id, second = vip.purchase(buyer.id, "month", "alipay", "ONCE")
        assert second == 60
        assert crud.get_vip_order(order_id).coupon_id is None
        assert crud.get_coupon_by_code("ONCE").uses.exhausted

    def test_unlimited_coupon_is_not_decremented(self, root_user, buyer):
        vip.create_coupon(root_user.id, "discount", 50, code="FOREVER", unlimited=True)
        for _ in range(3):
            _, payable = vip.purchase(buyer.id, "month", "alipay", "FOREVER")
            assert payable == 30
        uses = crud.get_coupon_by_code("FOREVER").uses
        assert uses.unlimited
        assert uses.to_column() is None

    def test_unknown_coupon_is_ignored(self, buyer):
        _, payable = vip.purchase(buyer.id, "season", "alipay", "NOPE")
        assert payable == 150


class TestConfirm:
    """支付确认"""

    def test_confirm_grants_vip(self, buyer):
        order_id, _ = vip.purchase(buyer.id, "season", "alipay")

        assert vip.confirm(order_id, True) == "paid"

        assert crud.get_vip_order(order_id).status == "paid"
        user = crud.get_user_by_id(buyer.id)
        assert user.vip_level == "season"
        assert_expiry_close(user.vip_expiry, 90)

    def test_failed_payment_keeps_pending(self, buyer):
        order_id, _ = vip.purchase(buyer.id, "month", "alipay")
        assert vip.confirm(order_id, False) == "pending"
        assert crud.get_user_by_id(buyer.id).vip_expiry is None

    def test_duplicate_confirm_does_not_extend(self, buyer):
        order_id, _ = vip.purchase(buyer.id, "month", "alipay")
        vip.confirm(order_id, True)
        expiry = crud.get_user_by_id(buyer.id).vip_expiry

        assert vip.confirm(order_id, True) == "paid"
        assert crud.get_user_by_id(buyer.id).vip_expiry == expiry

    def test_new_purchase_overwrites_expiry(self, buyer):
        year_id, _ = vip.purchase(buyer.id, "year", "alipay")
        vip.confirm(year_id, True)
        month_id, _ = vip.purchase(buyer.id, "month", "alipay")
        vip.confirm(month_id, True)

        user = crud.get_user_by_id(buyer.id)
        assert user.vip_level == "month"
        assert_expiry_close(user.vip_expiry, 30)

    def test_unknown_order(self):
        with pytest.raises(OrderNotFound):
            vip.confirm("missing", True)


class TestCreateCoupon:
    """创建优惠券"""

    def test_defaults(self, root_user):
        coupon = vip.create_coupon(root_user.id, "free")
        assert coupon.code.startswith("CP-")
        assert coupon.uses == CouponUses(remaining=1)
        assert coupon.created_by == root_user.id

    def test_duplicate_code(self, root_user):
        vip.create_coupon(root_user.id, "free", code="SAME")
        with pytest.raises(DuplicateCode):
            vip.create_coupon(root_user.id, "free", code="SAME")

    @pytest.mark.parametrize("kwargs", [
        {"coupon_type": "gift"},
        {"coupon_type": "discount", "value": 0},
        {"coupon_type": "discount", "value": 120},
        {"coupon_type": "free", "uses": 0},
    ])
    def test_invalid(self, root_user, kwargs):
        with pytest.raises(ValidationError):
            vip.create_coupon(root_user.id, **kwargs)


def test_concurrent_redemptions_do_not_over_redeem(root_user, buyer):
    """多个并发请求使用同一张单次优惠券，只有一个享受优惠"""
    vip.create_coupon(root_user.id, "free", code="RACE", uses=1)

    workers = 4
    barrier = threading.Barrier(workers)
    payables = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        _, payable = vip.purchase(buyer.id, "month", "alipay", "RACE")
        with lock:
            payables.append(payable)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(payables) == [0, 60, 60, 60]
    assert crud.get_coupon_by_code("RACE").uses == CouponUses(remaining=0)
