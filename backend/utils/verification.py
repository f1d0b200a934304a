"""
验证码工具
- 6位数字验证码（注册验证与密码重置共用）
- 10分钟有效期
- 过期只在使用时按时间戳判断，不做后台清理
"""
import secrets
from datetime import datetime, timedelta
from typing import Optional

# 配置
CODE_EXPIRE_MINUTES = 10  # 验证码有效期（分钟）


def generate_code() -> str:
    """生成6位数字验证码"""
    return str(100000 + secrets.randbelow(900000))


def code_expiry(now: Optional[datetime] = None) -> datetime:
    """计算验证码到期时间"""
    return (now or datetime.now()) + timedelta(minutes=CODE_EXPIRE_MINUTES)


def check_code(stored_code: Optional[str], stored_expires: Optional[str], code: str,
               now: Optional[datetime] = None) -> bool:
    """
    校验验证码

    Args:
        stored_code: 数据库中保存的验证码
        stored_expires: 到期时间（ISO 格式）
        code: 用户输入的验证码

    Returns:
        码值一致且未过期
    """
    if not stored_code or not stored_expires or not code:
        return False

    # 检查是否过期
    expires_at = datetime.fromisoformat(stored_expires)
    if (now or datetime.now()) > expires_at:
        return False

    return secrets.compare_digest(stored_code, code)
