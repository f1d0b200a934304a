"""
密码哈希（bcrypt）
"""
import logging
import os

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt 轮数，不低于 10
BCRYPT_ROUNDS = max(10, int(os.getenv("BCRYPT_ROUNDS", "10")))


def hash_password(password: str) -> str:
    """使用bcrypt哈希密码"""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, hashed_password: str) -> bool:
    """
    验证密码

    Args:
        password: 原始密码
        hashed_password: 哈希后的密码（为空表示未设置）

    Returns:
        验证结果
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError as e:
        logger.error(f"密码哈希格式错误: {e}")
        return False
