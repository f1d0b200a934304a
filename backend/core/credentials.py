"""
账号凭证与验证码状态机

注册：未注册(仅邮箱) -> 待验证(验证码, 到期时间) -> 已激活(密码哈希, verified)
找回密码：已激活 -> 待重置(重置码, 到期时间) -> 已激活(新密码哈希)
"""
import logging
from typing import Optional, Tuple

from backend.db import crud
from backend.db.models import User
from backend.exceptions import (
    AlreadyRegistered,
    AuthorizationError,
    InvalidChallenge,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from backend.utils.email_sender import send_code_email
from backend.utils.passwords import hash_password, verify_password
from backend.utils.verification import check_code, code_expiry, generate_code
from . import audit
from .developer_codes import normalize_code
from .roles import resolve_role

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _check_password_strength(password: str):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def request_verification(email: str) -> str:
    """
    发送注册验证码

    邮箱无记录时创建占位用户，有记录时覆盖旧验证码，可重复调用。

    Returns:
        验证码（开发环境下由接口回显）
    """
    code = generate_code()
    crud.save_verification_challenge(email, code, code_expiry())
    email_sent = send_code_email(email, code, purpose="verify")
    logger.info(f"📧 注册验证码已签发 | 邮箱: {email} | 发送状态: {'成功' if email_sent else '失败'}")
    return code


def complete_registration(
    email: str,
    code: str,
    password: str,
    nickname: str,
    device_fingerprint: Optional[str] = None,
    developer_code: Optional[str] = None,
) -> Tuple[User, str]:
    """
    完成注册

    附带开发者码时，激活与绑定在同一事务内完成；绑定失败整体回滚，
    用户仍为待注册状态，可重新提交。

    Returns:
        (用户, 角色)

    Raises:
        InvalidChallenge: 验证码不匹配或已过期
        AlreadyRegistered: 账号已注册
        CodeUnavailable: 开发者码无法绑定
    """
    developer_code = normalize_code(developer_code) or None
    user = crud.get_user_by_email(email)
    if not user or not check_code(user.verification_code, user.verification_expires, code):
        logger.warning(f"注册验证码无效 | 邮箱: {email}")
        raise InvalidChallenge()
    if not user.is_pending:
        raise AlreadyRegistered()
    _check_password_strength(password)

    password_hash = hash_password(password)
    user = crud.activate_user(
        user.id,
        verification_code=code,
        password_hash=password_hash,
        nickname=nickname,
        device_fingerprint=device_fingerprint,
        developer_code=developer_code,
    )
    role = resolve_role(user)

    logger.info(f"✅ 注册完成 | ID: {user.id} | 邮箱: {email} | 角色: {role}")
    audit.record(user.id, "register", email, "User registration completed")
    if developer_code:
        audit.record(user.id, "bind_code", developer_code, "Developer identity bound at registration")
    return user, role


def login(email: str, password: str) -> Tuple[User, str]:
    """
    登录

    邮箱不存在、未完成注册、密码错误均返回同一错误。
    """
    user = crud.get_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        logger.warning(f"登录失败 | 邮箱: {email}")
        raise InvalidCredentials()
    if user.status == "suspended":
        logger.warning(f"已停用账号尝试登录 | ID: {user.id}")
        raise AuthorizationError("Account suspended")

    role = resolve_role(user)
    logger.info(f"✅ 用户登录成功 | ID: {user.id} | 角色: {role}")
    return user, role


def request_reset(email: str) -> str:
    """
    发送密码重置码

    Raises:
        NotFound: 邮箱没有已注册账号
    """
    user = crud.get_user_by_email(email)
    if not user or user.is_pending:
        raise NotFound("Unknown account")

    code = generate_code()
    crud.save_reset_challenge(user.id, code, code_expiry())
    email_sent = send_code_email(email, code, purpose="reset")
    logger.info(f"📧 重置码已签发 | ID: {user.id} | 发送状态: {'成功' if email_sent else '失败'}")
    return code


def complete_reset(email: str, reset_code: str, password: str) -> None:
    """
    使用重置码设置新密码，成功后清除重置码

    Raises:
        InvalidChallenge: 重置码不匹配、已过期或已被使用
    """
    user = crud.get_user_by_email(email)
    if not user or not check_code(user.reset_token, user.reset_expires, reset_code):
        logger.warning(f"重置码无效 | 邮箱: {email}")
        raise InvalidChallenge("Invalid reset request")
    _check_password_strength(password)

    if not crud.reset_password(user.id, reset_code, hash_password(password)):
        raise InvalidChallenge("Invalid reset request")

    logger.info(f"🔑 密码已重置 | ID: {user.id}")
    audit.record(user.id, "reset_password", email, "Password reset")
