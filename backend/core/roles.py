"""
角色推导

角色不落库，每次签发 token 时由用户标记重新计算。
"""
from backend.db.models import User

ROLES = ("user", "developer", "admin", "root")
ROLE_RANK = {role: rank for rank, role in enumerate(ROLES)}


def resolve_role(user: User) -> str:
    """root > admin > developer > user，总能得到四者之一"""
    if user.is_root:
        return "root"
    if user.is_admin:
        return "admin"
    if user.developer_code_id:
        return "developer"
    return "user"


def role_at_least(role: str, level: str) -> bool:
    """role 是否不低于 level；未知角色一律视为无权限"""
    if role not in ROLE_RANK or level not in ROLE_RANK:
        return False
    return ROLE_RANK[role] >= ROLE_RANK[level]
