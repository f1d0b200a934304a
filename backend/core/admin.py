"""管理员用户管理"""
import logging
from typing import List

from backend.db import crud
from backend.db.models import USER_STATUSES
from backend.exceptions import NotFound, ValidationError
from . import audit
from .roles import resolve_role

logger = logging.getLogger(__name__)


def list_users() -> List[dict]:
    """用户列表（不含密码哈希与验证码字段）"""
    return [
        {
            "id": u.id,
            "email": u.email,
            "nickname": u.nickname,
            "vipLevel": u.vip_level,
            "vipExpiry": u.vip_expiry,
            "status": u.status,
            "developerCodeId": u.developer_code_id,
            "isAdmin": u.is_admin,
            "isRoot": u.is_root,
            "role": resolve_role(u),
        }
        for u in crud.list_users()
    ]


def set_status(actor_id: str, user_id: str, status: str) -> None:
    if status not in USER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(USER_STATUSES)}")
    if not crud.set_user_status(user_id, status):
        raise NotFound("User not found")

    logger.info(f"账号状态已更新 | 用户: {user_id} | 状态: {status} | 操作者: {actor_id}")
    audit.record(actor_id, "set_status", user_id, f"Status {status}")
