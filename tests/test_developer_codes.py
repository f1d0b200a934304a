"""
开发者码台账测试
生成、绑定、停用以及并发绑定
"""

import threading

import pytest

from backend.core import developer_codes
from backend.db import crud
from backend.db.database import GENESIS_CODE, init_db
from backend.exceptions import (
    CodeAlreadyBound,
    CodeNotFound,
    DuplicateCode,
    InsufficientPrivilege,
    UserAlreadyBound,
    ValidationError,
)


def test_genesis_code_created_once():
    init_db()
    init_db()
    codes = [c for c in crud.get_all_developer_codes() if c.code == GENESIS_CODE]
    assert len(codes) == 1
    genesis = codes[0]
    assert genesis.level == "root"
    assert genesis.generated_by is None
    assert genesis.max_generations is None
    assert genesis.is_active
    assert genesis.bound_user_id is None


class TestGenerate:
    """生成开发者码"""

    def test_user_role_cannot_generate(self, register_user):
        user, role = register_user("plain@example.com")
        with pytest.raises(InsufficientPrivilege):
            developer_codes.generate(user.id, role, level="developer")

    def test_generate_batch(self, root_user):
        codes = developer_codes.generate(root_user.id, "root", level="admin", quantity=3, note="team")
        assert len(codes) == 3
        assert len({c.code for c in codes}) == 3
        for c in codes:
            assert c.code.startswith("DEV-admin-")
            assert c.level == "admin"
            assert c.is_active
            assert c.generated_by == root_user.id
            assert c.max_generations == 1
            assert c.note == "team"

    def test_custom_code_only_for_first(self, root_user):
        codes = developer_codes.generate(root_user.id, "root", quantity=2, custom_code="HELLO")
        assert codes[0].code == "HELLO"
        assert codes[1].code.startswith("DEV-developer-")

    def test_unlimited_has_no_max_generations(self, root_user):
        codes = developer_codes.generate(root_user.id, "root", unlimited=True)
        assert codes[0].max_generations is None

    def test_duplicate_custom_code(self, root_user):
        developer_codes.generate(root_user.id, "root", custom_code="DUP")
        with pytest.raises(DuplicateCode):
            developer_codes.generate(root_user.id, "root", quantity=3, custom_code="DUP")
        # 冲突时整批回滚
        assert len([c for c in crud.get_all_developer_codes() if c.generated_by == root_user.id]) == 1

    @pytest.mark.parametrize("kwargs", [
        {"level": "superuser"},
        {"quantity": 0},
        {"quantity": 51},
    ])
    def test_invalid_arguments(self, root_user, kwargs):
        with pytest.raises(ValidationError):
            developer_codes.generate(root_user.id, "root", **kwargs)


class TestBind:
    """绑定开发者码"""

    def test_bind_developer_code(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        user, _ = register_user("dev@example.com")

        bound_user, role = developer_codes.bind(code, user.id)

        assert role == "developer"
        stored = crud.get_developer_code(code)
        assert stored.bound_user_id == user.id
        assert stored.bound_at is not None
        assert bound_user.developer_code_id == stored.id
        assert not bound_user.is_admin
        assert not bound_user.is_root

    def test_bind_admin_code_raises_admin_flag(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root", level="admin")[0].code
        user, _ = register_user("admin@example.com")
        bound_user, role = developer_codes.bind(code, user.id)
        assert role == "admin"
        assert bound_user.is_admin
        assert not bound_user.is_root

    def test_bind_root_code_raises_both_flags(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root", level="root")[0].code
        user, _ = register_user("root2@example.com")
        bound_user, role = developer_codes.bind(code, user.id)
        assert role == "root"
        assert bound_user.is_admin
        assert bound_user.is_root

    def test_second_bind_fails(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        first, _ = register_user("first@example.com")
        second, _ = register_user("second@example.com")

        developer_codes.bind(code, first.id)
        with pytest.raises(CodeAlreadyBound):
            developer_codes.bind(code, second.id)
        with pytest.raises(CodeAlreadyBound):
            developer_codes.bind(code, first.id)

        assert crud.get_developer_code(code).bound_user_id == first.id
        assert crud.get_user_by_id(second.id).developer_code_id is None

    def test_unknown_code(self, register_user):
        user, _ = register_user("nobody@example.com")
        with pytest.raises(CodeNotFound):
            developer_codes.bind("DEV-developer-missing", user.id)

    def test_user_binds_only_one_code(self, root_user, register_user):
        first, second = developer_codes.generate(root_user.id, "root", quantity=2)
        user, _ = register_user("single@example.com")
        developer_codes.bind(first.code, user.id)

        with pytest.raises(UserAlreadyBound):
            developer_codes.bind(second.code, user.id)

        # 第二个码未被占用，用户仍指向第一个码
        assert crud.get_developer_code(second.code).bound_user_id is None
        assert crud.get_user_by_id(user.id).developer_code_id == first.id

        other, _ = register_user("other@example.com")
        _, role = developer_codes.bind(second.code, other.id)
        assert role == "developer"

    def test_root_cannot_bind_another_code(self, root_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        with pytest.raises(UserAlreadyBound):
            developer_codes.bind(code, root_user.id)

        user = crud.get_user_by_id(root_user.id)
        assert user.is_root and user.is_admin
        assert crud.get_developer_code(code).bound_user_id is None

    def test_code_is_trimmed(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        user, _ = register_user("paste@example.com")
        _, role = developer_codes.bind(f"  {code}\n", user.id)
        assert role == "developer"
        assert crud.get_developer_code(code).bound_user_id == user.id


class TestRevoke:
    """停用开发者码"""

    def test_revoked_code_cannot_be_bound(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        developer_codes.revoke(code, actor_id=root_user.id)
        user, _ = register_user("late@example.com")

        with pytest.raises(CodeNotFound):
            developer_codes.bind(code, user.id)
        assert crud.get_developer_code(code).bound_user_id is None

    def test_revoke_keeps_existing_binding(self, root_user, register_user):
        code = developer_codes.generate(root_user.id, "root", level="admin")[0].code
        user, _ = register_user("keeper@example.com")
        developer_codes.bind(code, user.id)

        developer_codes.revoke(code, actor_id=root_user.id)

        stored = crud.get_developer_code(code)
        assert not stored.is_active
        assert stored.bound_user_id == user.id
        assert crud.get_user_by_id(user.id).is_admin

    def test_revoke_unknown_code(self):
        with pytest.raises(CodeNotFound):
            developer_codes.revoke("nope")

    def test_revoke_is_audited(self, root_user):
        code = developer_codes.generate(root_user.id, "root")[0].code
        developer_codes.revoke(code, actor_id=root_user.id)
        actions = [(e.action, e.target) for e in crud.get_audit_logs()]
        assert ("revoke_code", code) in actions


def test_concurrent_binds_only_one_wins(root_user, register_user):
    """两个并发请求绑定同一个码，只有一个成功"""
    code = developer_codes.generate(root_user.id, "root")[0].code
    users = [register_user(f"racer{i}@example.com")[0] for i in range(2)]

    barrier = threading.Barrier(len(users))
    results = {}

    def attempt(user_id):
        barrier.wait()
        try:
            developer_codes.bind(code, user_id)
            results[user_id] = "bound"
        except CodeAlreadyBound:
            results[user_id] = "already_bound"

    threads = [threading.Thread(target=attempt, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results.values()) == ["already_bound", "bound"]
    winner = next(uid for uid, r in results.items() if r == "bound")
    assert crud.get_developer_code(code).bound_user_id == winner
