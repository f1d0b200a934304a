"""
数据库 CRUD 操作

涉及并发竞争的字段（开发者码绑定、优惠券次数、订单状态、一次性注册）
一律使用条件 UPDATE，并以 rowcount 判定是否成功，不依赖先查后写。
"""
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from backend.exceptions import (
    AlreadyRegistered,
    CodeAlreadyBound,
    CodeNotFound,
    CodeUnavailable,
    ConflictError,
    DuplicateCode,
    InvalidChallenge,
    UserAlreadyBound,
)
from .database import get_db
from .models import AuditLogEntry, Coupon, CouponUses, DeveloperCode, User, VipOrder


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now().isoformat()


def _integrity_error(exc: sqlite3.IntegrityError) -> ConflictError:
    """唯一约束冲突映射为 DuplicateCode，其余（外键等）映射为通用冲突"""
    if "UNIQUE" in str(exc):
        return DuplicateCode()
    return ConflictError("Referenced record does not exist")


# ==================== 用户操作 ====================

def get_user_by_email(email: str) -> Optional[User]:
    """通过邮箱获取用户"""
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        if row:
            return User(**dict(row))
        return None


def get_user_by_id(user_id: str) -> Optional[User]:
    """通过ID获取用户"""
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
        if row:
            return User(**dict(row))
        return None


def list_users() -> List[User]:
    with get_db(readonly=True) as conn:
        rows = conn.execute('SELECT * FROM users ORDER BY created_at DESC').fetchall()
        return [User(**dict(row)) for row in rows]


def save_verification_challenge(email: str, code: str, expires: datetime) -> User:
    """
    写入注册验证码

    邮箱不存在时创建占位用户（空密码），存在时覆盖旧验证码。
    """
    now = _now()
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            UPDATE users
            SET verification_code = ?, verification_expires = ?, updated_at = ?
            WHERE email = ?
        ''', (code, expires.isoformat(), now, email))
        if cursor.rowcount == 0:
            cursor.execute('''
                INSERT INTO users
                    (id, email, password_hash, nickname, verified, created_at, updated_at,
                     verification_code, verification_expires)
                VALUES (?, ?, '', ?, 0, ?, ?, ?, ?)
            ''', (_new_id(), email, '访客', now, now, code, expires.isoformat()))

    return get_user_by_email(email)


def activate_user(
    user_id: str,
    verification_code: str,
    password_hash: str,
    nickname: str,
    device_fingerprint: Optional[str] = None,
    developer_code: Optional[str] = None,
) -> User:
    """
    完成注册（待注册 -> 已激活）

    与开发者码绑定处于同一事务：绑定失败则整体回滚并抛出 CodeUnavailable，
    用户保持待注册状态。

    Raises:
        AlreadyRegistered: 已设置过密码
        InvalidChallenge: 验证码在此期间被覆盖
        CodeUnavailable: 开发者码不存在、已停用或已被绑定
    """
    now = _now()
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            UPDATE users
            SET password_hash = ?, nickname = ?, verified = 1, updated_at = ?,
                device_fingerprint = COALESCE(device_fingerprint, ?),
                verification_code = NULL, verification_expires = NULL
            WHERE id = ? AND password_hash = '' AND verification_code = ?
        ''', (password_hash, nickname, now, device_fingerprint, user_id, verification_code))

        if cursor.rowcount == 0:
            row = cursor.execute('SELECT password_hash FROM users WHERE id = ?', (user_id,)).fetchone()
            if row and row['password_hash']:
                raise AlreadyRegistered()
            raise InvalidChallenge()

        if developer_code:
            try:
                _bind_code(conn, developer_code, user_id)
            except (CodeNotFound, CodeAlreadyBound):
                raise CodeUnavailable()

    return get_user_by_id(user_id)


def save_reset_challenge(user_id: str, token: str, expires: datetime) -> bool:
    """写入密码重置码"""
    with get_db() as conn:
        cursor = conn.execute('''
            UPDATE users
            SET reset_token = ?, reset_expires = ?, updated_at = ?
            WHERE id = ?
        ''', (token, expires.isoformat(), _now(), user_id))
        return cursor.rowcount > 0


def reset_password(user_id: str, token: str, password_hash: str) -> bool:
    """
    使用重置码更新密码，同时清除重置码防止重放

    Returns:
        False 表示重置码已被使用或覆盖
    """
    with get_db() as conn:
        cursor = conn.execute('''
            UPDATE users
            SET password_hash = ?, reset_token = NULL, reset_expires = NULL, updated_at = ?
            WHERE id = ? AND reset_token = ?
        ''', (password_hash, _now(), user_id, token))
        return cursor.rowcount > 0


def set_user_status(user_id: str, status: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute(
            'UPDATE users SET status = ?, updated_at = ? WHERE id = ?',
            (status, _now(), user_id)
        )
        return cursor.rowcount > 0


def _grant_vip(conn: sqlite3.Connection, user_id: str, plan: str, days: int):
    """设置 VIP 等级与到期时间（覆盖原有到期时间，不叠加）"""
    expiry = (datetime.now() + timedelta(days=days)).isoformat()
    conn.execute('''
        UPDATE users
        SET vip_level = ?, vip_expiry = ?, updated_at = ?
        WHERE id = ?
    ''', (plan, expiry, _now(), user_id))


# ==================== 开发者码操作 ====================

def create_developer_codes(
    codes: List[str],
    level: str,
    generated_by: Optional[str],
    max_generations: Optional[int],
    note: Optional[str] = None,
) -> List[DeveloperCode]:
    """
    批量创建开发者码（同一事务，任一冲突则全部回滚）

    Raises:
        DuplicateCode: 码值与已有记录冲突
    """
    now = _now()
    ids = []
    try:
        with get_db() as conn:
            for code in codes:
                code_id = _new_id()
                conn.execute('''
                    INSERT INTO developer_codes
                        (id, code, level, generated_by, is_active, max_generations, note, created_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                ''', (code_id, code, level, generated_by, max_generations, note, now))
                ids.append(code_id)
    except sqlite3.IntegrityError as e:
        raise _integrity_error(e)

    return [get_developer_code_by_id(code_id) for code_id in ids]


def get_developer_code_by_id(code_id: str) -> Optional[DeveloperCode]:
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM developer_codes WHERE id = ?', (code_id,)).fetchone()
        if row:
            return DeveloperCode(**dict(row))
        return None


def get_developer_code(code: str) -> Optional[DeveloperCode]:
    """通过码值获取开发者码"""
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM developer_codes WHERE code = ?', (code,)).fetchone()
        if row:
            return DeveloperCode(**dict(row))
        return None


def get_all_developer_codes(limit: int = 500) -> List[DeveloperCode]:
    with get_db(readonly=True) as conn:
        rows = conn.execute(
            'SELECT * FROM developer_codes ORDER BY created_at DESC LIMIT ?',
            (limit,)
        ).fetchall()
        return [DeveloperCode(**dict(row)) for row in rows]


def _bind_code(conn: sqlite3.Connection, code: str, user_id: str) -> sqlite3.Row:
    """
    在当前事务内绑定开发者码，并提升用户标记

    一个码只绑定一次，一个用户也只绑定一个码；is_admin / is_root 只升不降。

    Raises:
        CodeNotFound: 码不存在或已停用
        CodeAlreadyBound: 码已被绑定
        UserAlreadyBound: 用户已绑定过其他码
    """
    row = conn.execute('SELECT * FROM developer_codes WHERE code = ?', (code,)).fetchone()
    if not row or not row['is_active']:
        raise CodeNotFound()
    if row['bound_user_id']:
        raise CodeAlreadyBound()

    user_row = conn.execute('SELECT developer_code_id FROM users WHERE id = ?', (user_id,)).fetchone()
    if user_row and user_row['developer_code_id']:
        raise UserAlreadyBound()

    cursor = conn.execute('''
        UPDATE developer_codes
        SET bound_user_id = ?, bound_at = ?
        WHERE id = ? AND bound_user_id IS NULL AND is_active = 1
    ''', (user_id, _now(), row['id']))
    if cursor.rowcount == 0:
        raise CodeAlreadyBound()

    level = row['level']
    cursor = conn.execute('''
        UPDATE users
        SET developer_code_id = ?,
            is_admin = CASE WHEN ? IN ('admin', 'root') THEN 1 ELSE is_admin END,
            is_root = CASE WHEN ? = 'root' THEN 1 ELSE is_root END,
            updated_at = ?
        WHERE id = ? AND developer_code_id IS NULL
    ''', (row['id'], level, level, _now(), user_id))
    # 抛出后由 get_db 回滚，码的绑定一并撤销
    if cursor.rowcount == 0:
        raise UserAlreadyBound()
    return row


def bind_developer_code(code: str, user_id: str) -> User:
    """
    绑定开发者码

    Raises:
        CodeNotFound: 码不存在或已停用
        CodeAlreadyBound: 码已被绑定
        UserAlreadyBound: 用户已绑定过其他码
    """
    with get_db() as conn:
        _bind_code(conn, code, user_id)

    return get_user_by_id(user_id)


def deactivate_developer_code(code: str) -> bool:
    """停用开发者码（不影响已有绑定）"""
    with get_db() as conn:
        cursor = conn.execute('UPDATE developer_codes SET is_active = 0 WHERE code = ?', (code,))
        return cursor.rowcount > 0


# ==================== 优惠券操作 ====================

def create_coupon(
    code: str,
    coupon_type: str,
    value: int,
    uses: CouponUses,
    created_by: Optional[str],
    duration_days: Optional[int] = None,
) -> Coupon:
    """
    创建优惠券

    Raises:
        DuplicateCode: 券码已存在
    """
    coupon_id = _new_id()
    try:
        with get_db() as conn:
            conn.execute('''
                INSERT INTO coupons
                    (id, code, type, value, duration_days, uses_remaining, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (coupon_id, code, coupon_type, value, duration_days, uses.to_column(), created_by, _now()))
    except sqlite3.IntegrityError as e:
        raise _integrity_error(e)

    return get_coupon_by_code(code)


def get_coupon_by_code(code: str) -> Optional[Coupon]:
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM coupons WHERE code = ?', (code,)).fetchone()
        if row:
            return Coupon.from_row(row)
        return None


def _consume_coupon(conn: sqlite3.Connection, code: str) -> Optional[Coupon]:
    """
    在当前事务内扣减一次优惠券

    Returns:
        扣减前的优惠券；不存在或次数已用完返回 None
    """
    row = conn.execute('''
        SELECT * FROM coupons
        WHERE code = ? AND (uses_remaining IS NULL OR uses_remaining > 0)
    ''', (code,)).fetchone()
    if not row:
        return None

    cursor = conn.execute('''
        UPDATE coupons
        SET uses_remaining = CASE WHEN uses_remaining IS NULL THEN NULL ELSE uses_remaining - 1 END
        WHERE id = ? AND (uses_remaining IS NULL OR uses_remaining > 0)
    ''', (row['id'],))
    if cursor.rowcount == 0:
        return None
    return Coupon.from_row(row)


# ==================== 订单操作 ====================

def create_vip_order(
    user_id: str,
    plan: str,
    channel: str,
    coupon_code: Optional[str],
    price_for: Callable[[Optional[Coupon]], int],
    vip_days: int,
) -> VipOrder:
    """
    创建 VIP 订单

    优惠券扣减、订单写入、零元订单的 VIP 发放在同一事务内完成。

    Args:
        price_for: 根据（可能为 None 的）优惠券计算应付金额
        vip_days: 套餐天数，零元订单立即生效
    """
    order_id = _new_id()
    now = _now()
    with get_db() as conn:
        coupon = _consume_coupon(conn, coupon_code) if coupon_code else None
        amount = price_for(coupon)
        status = 'paid' if amount == 0 else 'pending'

        conn.execute('''
            INSERT INTO vip_orders
                (id, user_id, plan, amount, channel, status, coupon_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (order_id, user_id, plan, amount, channel, status,
              coupon.id if coupon else None, now, now))

        if amount == 0:
            _grant_vip(conn, user_id, plan, vip_days)

    return get_vip_order(order_id)


def get_vip_order(order_id: str) -> Optional[VipOrder]:
    """通过ID获取订单"""
    with get_db(readonly=True) as conn:
        row = conn.execute('SELECT * FROM vip_orders WHERE id = ?', (order_id,)).fetchone()
        if row:
            return VipOrder(**dict(row))
        return None


def mark_order_paid(order_id: str, vip_days: int) -> bool:
    """
    订单 pending -> paid，并发放 VIP

    Returns:
        True 表示本次完成了状态迁移；订单已是 paid 时返回 False，不重复发放
    """
    with get_db() as conn:
        cursor = conn.execute('''
            UPDATE vip_orders
            SET status = 'paid', updated_at = ?
            WHERE id = ? AND status = 'pending'
        ''', (_now(), order_id))
        if cursor.rowcount == 0:
            return False

        row = conn.execute('SELECT user_id, plan FROM vip_orders WHERE id = ?', (order_id,)).fetchone()
        _grant_vip(conn, row['user_id'], row['plan'], vip_days)
        return True


# ==================== 审计日志 ====================

def add_audit_log(
    actor_id: Optional[str],
    action: str,
    target: Optional[str],
    detail: Optional[str],
) -> AuditLogEntry:
    entry = AuditLogEntry(
        id=_new_id(),
        actor_id=actor_id,
        action=action,
        target=target,
        detail=detail,
        created_at=_now(),
    )
    with get_db() as conn:
        conn.execute('''
            INSERT INTO audit_log (id, actor_id, action, target, detail, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (entry.id, entry.actor_id, entry.action, entry.target, entry.detail, entry.created_at))
    return entry


def get_audit_logs(limit: int = 200) -> List[AuditLogEntry]:
    """获取审计日志，按时间倒序"""
    with get_db(readonly=True) as conn:
        rows = conn.execute(
            'SELECT * FROM audit_log ORDER BY created_at DESC LIMIT ?',
            (limit,)
        ).fetchall()
        return [AuditLogEntry(**dict(row)) for row in rows]
