"""
JWT 认证工具
"""
import logging
import os
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from backend.core.roles import role_at_least
from backend.db.models import User
from backend.exceptions import AuthorizationError, InvalidToken

logger = logging.getLogger(__name__)

# JWT 配置
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "vesper-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 12

security = HTTPBearer(auto_error=False)


class SessionClaims(BaseModel):
    """token 中携带的身份信息（角色为签发时刻的快照）"""
    id: str
    email: str
    role: str


def issue_token(user: User, role: str) -> str:
    """生成 JWT token，固定 12 小时有效，无刷新"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "id": user.id,
        "email": user.email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=JWT_EXPIRE_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> SessionClaims:
    """
    解析 JWT token

    Raises:
        InvalidToken: 签名错误、格式错误或已过期
    """
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return SessionClaims(id=payload["id"], email=payload["email"], role=payload["role"])
    except (JWTError, KeyError):
        raise InvalidToken()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> SessionClaims:
    """
    获取当前用户（FastAPI Dependency）
    从 Authorization: Bearer {token} header 中提取并验证 token
    """
    if credentials is None:
        raise InvalidToken("Missing token")
    return verify_token(credentials.credentials)


def require_role(level: str):
    """
    角色门槛依赖工厂

    不满足时统一返回 403 Not authorized，不透露所需等级。
    """
    async def _require_role(current_user: SessionClaims = Depends(get_current_user)) -> SessionClaims:
        if not role_at_least(current_user.role, level):
            logger.warning(f"权限不足 | 用户: {current_user.id} | 角色: {current_user.role} | 需要: {level}")
            raise AuthorizationError()
        return current_user

    return _require_role
