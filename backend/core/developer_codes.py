"""
开发者码台账

开发者码一次性绑定到用户，绑定后用户角色随码等级提升：
developer 码只设置 developer_code_id，admin 码额外置 is_admin，
root 码额外置 is_admin 和 is_root。码只能停用，不能删除或解绑。
"""
import logging
import uuid
from typing import List, Optional, Tuple

from backend.db import crud
from backend.db.models import DEVELOPER_LEVELS, DeveloperCode, User
from backend.exceptions import CodeNotFound, InsufficientPrivilege, NotFound, ValidationError
from . import audit
from .roles import resolve_role, role_at_least

logger = logging.getLogger(__name__)

MAX_QUANTITY = 50


def generate_code_value(level: str) -> str:
    """生成码值：DEV-{level}-{8位随机十六进制}"""
    return f"DEV-{level}-{uuid.uuid4().hex[:8]}"


def normalize_code(code: Optional[str]) -> str:
    """去掉粘贴时带入的首尾空白"""
    return (code or "").strip()


def generate(
    issuer_id: str,
    issuer_role: str,
    level: str = "developer",
    quantity: int = 1,
    custom_code: Optional[str] = None,
    unlimited: bool = False,
    note: Optional[str] = None,
) -> List[DeveloperCode]:
    """
    批量生成开发者码

    Args:
        issuer_role: 签发者角色，至少为 developer
        custom_code: 自定义码值，仅用于第一个；冲突时由存储层抛出 DuplicateCode
        unlimited: True 时 max_generations 为空

    Raises:
        InsufficientPrivilege: 签发者角色不足
        ValidationError: 等级或数量非法
        DuplicateCode: 自定义码值已存在
    """
    if not role_at_least(issuer_role, "developer"):
        raise InsufficientPrivilege()
    if level not in DEVELOPER_LEVELS:
        raise ValidationError(f"Level must be one of: {', '.join(DEVELOPER_LEVELS)}")
    if not 1 <= quantity <= MAX_QUANTITY:
        raise ValidationError(f"Quantity must be between 1 and {MAX_QUANTITY}")

    values = [
        custom_code if custom_code and i == 0 else generate_code_value(level)
        for i in range(quantity)
    ]
    codes = crud.create_developer_codes(
        values,
        level=level,
        generated_by=issuer_id,
        max_generations=None if unlimited else 1,
        note=note,
    )

    logger.info(f"🎫 生成 {quantity} 个 {level} 开发者码 | 签发者: {issuer_id}")
    audit.record(issuer_id, "generate_codes", str(quantity), f"Level {level}")
    return codes


def bind(code: str, user_id: str) -> Tuple[User, str]:
    """
    绑定开发者码到用户

    Returns:
        (绑定后的用户, 重新推导的角色)

    Raises:
        CodeNotFound: 码不存在或已停用
        CodeAlreadyBound: 码已被绑定（包括并发竞争失败的一方）
        UserAlreadyBound: 用户已绑定过其他码
    """
    code = normalize_code(code)
    if not code:
        raise ValidationError("Code required")

    if crud.get_user_by_id(user_id) is None:
        raise NotFound("User not found")

    user = crud.bind_developer_code(code, user_id)
    role = resolve_role(user)

    logger.info(f"🔗 开发者码已绑定 | 码: {code} | 用户: {user_id} | 角色: {role}")
    audit.record(user_id, "bind_code", code, "Developer identity bound")
    return user, role


def revoke(code: str, actor_id: Optional[str] = None) -> None:
    """
    停用开发者码

    只阻止后续绑定，已有绑定和已提升的角色标记不受影响。
    """
    if not crud.deactivate_developer_code(code):
        raise CodeNotFound()

    logger.info(f"🚫 开发者码已停用 | 码: {code} | 操作者: {actor_id}")
    audit.record(actor_id, "revoke_code", code, "Code revoked")


def list_codes() -> List[DeveloperCode]:
    return crud.get_all_developer_codes()
