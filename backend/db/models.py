"""
数据模型定义
"""
from typing import Optional

from pydantic import BaseModel

DEVELOPER_LEVELS = ("developer", "admin", "root")
COUPON_TYPES = ("discount", "free")
USER_STATUSES = ("active", "suspended")


# ==================== 用户模型 ====================

class User(BaseModel):
    """用户完整信息（含验证/重置挑战字段）"""
    id: str
    email: str
    password_hash: str = ""       # 空字符串表示待注册
    nickname: str
    verified: bool = False
    status: str = "active"        # active / suspended
    developer_code_id: Optional[str] = None
    is_admin: bool = False
    is_root: bool = False
    vip_level: str = "none"       # none / month / season / year
    vip_expiry: Optional[str] = None
    verification_code: Optional[str] = None
    verification_expires: Optional[str] = None
    reset_token: Optional[str] = None
    reset_expires: Optional[str] = None
    device_fingerprint: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return not self.password_hash


# ==================== 开发者码模型 ====================

class DeveloperCode(BaseModel):
    """开发者码"""
    id: str
    code: str
    level: str                    # developer / admin / root
    generated_by: Optional[str] = None
    bound_user_id: Optional[str] = None
    bound_at: Optional[str] = None
    is_active: bool = True
    max_generations: Optional[int] = None  # None 表示不限
    note: Optional[str] = None
    created_at: Optional[str] = None


# ==================== 优惠券模型 ====================

class CouponUses(BaseModel):
    """
    优惠券剩余次数：不限次 或 剩余 n 次

    数据库中以 NULL 表示不限次。
    """
    unlimited: bool = False
    remaining: int = 0

    @classmethod
    def from_column(cls, value: Optional[int]) -> "CouponUses":
        if value is None:
            return cls(unlimited=True)
        return cls(remaining=value)

    def to_column(self) -> Optional[int]:
        return None if self.unlimited else self.remaining

    @property
    def exhausted(self) -> bool:
        return not self.unlimited and self.remaining <= 0


class Coupon(BaseModel):
    """优惠券"""
    id: str
    code: str
    type: str                     # discount / free
    value: int                    # discount 时为百分比
    duration_days: Optional[int] = None
    uses: CouponUses
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Coupon":
        data = dict(row)
        data["uses"] = CouponUses.from_column(data.pop("uses_remaining"))
        return cls(**data)


# ==================== 订单模型 ====================

class VipOrder(BaseModel):
    """VIP 订单"""
    id: str
    user_id: str
    plan: str                     # month / season / year
    amount: int                   # 折后应付金额
    channel: str
    status: str                   # pending / paid
    coupon_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ==================== 审计日志 ====================

class AuditLogEntry(BaseModel):
    """审计日志（只追加）"""
    id: str
    actor_id: Optional[str] = None
    action: str
    target: Optional[str] = None
    detail: Optional[str] = None
    created_at: Optional[str] = None
