"""
数据库模块
"""
from .database import init_db, get_db, get_connection
from .models import User, DeveloperCode, Coupon, CouponUses, VipOrder, AuditLogEntry
from . import crud

__all__ = [
    "init_db",
    "get_db",
    "get_connection",
    "User",
    "DeveloperCode",
    "Coupon",
    "CouponUses",
    "VipOrder",
    "AuditLogEntry",
    "crud",
]
