"""
核心模块
"""
from . import admin, audit, credentials, developer_codes, roles, vip

__all__ = [
    'admin',
    'audit',
    'credentials',
    'developer_codes',
    'roles',
    'vip',
]
