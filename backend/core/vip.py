"""
优惠券与 VIP 订单

价格表与天数表固定；支付由外部渠道完成，这里只负责建单与确认。
"""
import logging
import uuid
from typing import Optional, Tuple

from backend.db import crud
from backend.db.models import COUPON_TYPES, Coupon, CouponUses
from backend.exceptions import OrderNotFound, UnknownPlan, ValidationError
from . import audit

logger = logging.getLogger(__name__)

PLAN_PRICES = {"month": 60, "season": 150, "year": 360}
PLAN_DAYS = {"month": 30, "season": 90, "year": 365}


def compute_payable(amount: int, coupon: Optional[Coupon]) -> int:
    """
    计算折后应付金额

    discount 按百分比向上取整（整数运算），free 为 0，其他类型不打折。
    """
    if coupon is None:
        return amount
    if coupon.type == "discount":
        return -(-amount * coupon.value // 100)
    if coupon.type == "free":
        return 0
    return amount


def purchase(user_id: str, plan: str, channel: str, coupon_code: Optional[str] = None) -> Tuple[str, int]:
    """
    创建 VIP 订单

    优惠券不存在或已用完时静默忽略，按原价下单。
    应付为 0 时订单直接为 paid 并立即发放 VIP。

    Returns:
        (订单ID, 应付金额)

    Raises:
        UnknownPlan: 套餐不在价格表内
    """
    if plan not in PLAN_PRICES:
        raise UnknownPlan()

    price = PLAN_PRICES[plan]
    order = crud.create_vip_order(
        user_id,
        plan=plan,
        channel=channel,
        coupon_code=coupon_code,
        price_for=lambda coupon: compute_payable(price, coupon),
        vip_days=PLAN_DAYS[plan],
    )

    if coupon_code and order.coupon_id is None:
        logger.info(f"优惠券不可用，按原价下单 | 券码: {coupon_code}")
    logger.info(f"🧾 订单已创建 | ID: {order.id} | 套餐: {plan} | 应付: {order.amount} | 状态: {order.status}")
    audit.record(user_id, "vip_purchase", order.id, f"Plan {plan}, payable {order.amount}")
    return order.id, order.amount


def confirm(order_id: str, success: bool) -> str:
    """
    支付结果确认

    只有 pending -> paid 的那一次迁移会发放 VIP，重复回调不会再次延长到期时间。

    Returns:
        订单当前状态

    Raises:
        OrderNotFound: 订单不存在
    """
    order = crud.get_vip_order(order_id)
    if not order:
        raise OrderNotFound()
    if not success:
        logger.info(f"支付未成功 | 订单: {order_id} | 状态: {order.status}")
        return order.status

    if crud.mark_order_paid(order_id, PLAN_DAYS[order.plan]):
        logger.info(f"💰 订单已支付，VIP 已发放 | 订单: {order_id} | 用户: {order.user_id} | 套餐: {order.plan}")
        audit.record(order.user_id, "vip_confirm", order_id, f"Plan {order.plan} activated")
    else:
        logger.info(f"重复的支付确认已忽略 | 订单: {order_id}")
    return "paid"


def create_coupon(
    actor_id: Optional[str],
    coupon_type: str,
    value: int = 0,
    code: Optional[str] = None,
    duration_days: Optional[int] = None,
    uses: Optional[int] = None,
    unlimited: bool = False,
) -> Coupon:
    """
    创建优惠券

    Args:
        uses: 可用次数，默认 1
        unlimited: True 时不限次数
    """
    if coupon_type not in COUPON_TYPES:
        raise ValidationError(f"Type must be one of: {', '.join(COUPON_TYPES)}")
    if coupon_type == "discount" and not 1 <= value <= 100:
        raise ValidationError("Discount value must be between 1 and 100")
    if uses is not None and uses < 1:
        raise ValidationError("Uses must be positive")

    coupon = crud.create_coupon(
        code or f"CP-{uuid.uuid4().hex[:6]}",
        coupon_type,
        value,
        uses=CouponUses(unlimited=True) if unlimited else CouponUses(remaining=uses or 1),
        created_by=actor_id,
        duration_days=duration_days,
    )
    audit.record(actor_id, "create_coupon", coupon.code, f"{coupon_type} {value}")
    return coupon
