"""
业务异常定义
每个异常携带 HTTP 状态码，由 server.py 统一转换为 JSON 错误响应
"""
from typing import Optional


class AppError(Exception):
    """系统基础异常"""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        self.message = message or self.default_message
        self.error_code = error_code or type(self).__name__
        super().__init__(self.message)


# ==================== 400 ====================

class ValidationError(AppError):
    """字段缺失或格式错误"""
    status_code = 400
    default_message = "Missing fields"


class UnknownPlan(ValidationError):
    default_message = "Unknown plan"


class InvalidChallenge(AppError):
    """验证码/重置码不匹配或已过期"""
    status_code = 400
    default_message = "Invalid verification code"


class InvalidCredentials(AppError):
    """邮箱不存在与密码错误使用同一条消息，避免账号枚举"""
    status_code = 400
    default_message = "Invalid credentials"


# ==================== 401 / 403 ====================

class InvalidToken(AppError):
    status_code = 401
    default_message = "Invalid token"


class AuthorizationError(AppError):
    """权限不足，不暴露所需等级"""
    status_code = 403
    default_message = "Not authorized"


class InsufficientPrivilege(AuthorizationError):
    pass


# ==================== 404 ====================

class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class CodeNotFound(NotFound):
    default_message = "Code not available"


class OrderNotFound(NotFound):
    default_message = "Order not found"


# ==================== 409 ====================

class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class CodeAlreadyBound(ConflictError):
    default_message = "Code already bound"


class DuplicateCode(ConflictError):
    default_message = "Code already exists"


class AlreadyRegistered(ConflictError):
    default_message = "Account already exists"


class CodeUnavailable(ConflictError):
    """注册时附带的开发者码无法绑定"""
    default_message = "Developer code unavailable"


class UserAlreadyBound(ConflictError):
    """用户已绑定过开发者码，一个用户只能绑定一个码"""
    default_message = "Developer identity already bound"
