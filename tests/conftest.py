"""
测试配置和共享fixtures
每个测试使用独立的临时 SQLite 数据库
"""

import pytest
from fastapi.testclient import TestClient

from backend.core import credentials
from backend.db import database
from backend.db.database import GENESIS_CODE, init_db


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """创建测试数据库"""
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    init_db()
    yield db_path


@pytest.fixture
def register_user():
    """注册用户的工厂函数，返回 (user, role)"""
    def _register(email, password="secret123", nickname="tester", developer_code=None):
        code = credentials.request_verification(email)
        return credentials.complete_registration(
            email, code, password, nickname, developer_code=developer_code
        )

    return _register


@pytest.fixture
def root_user(register_user):
    """绑定创世根码的 root 用户"""
    user, role = register_user("root@example.com", developer_code=GENESIS_CODE)
    assert role == "root"
    return user


@pytest.fixture
def client(monkeypatch):
    """HTTP 测试客户端（开发环境，回显验证码）"""
    import server

    monkeypatch.setattr(server, "APP_ENV", "development")
    monkeypatch.setattr(server, "PAYMENT_WEBHOOK_SECRET", "")
    with TestClient(server.app) as c:
        yield c
