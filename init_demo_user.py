#!/usr/bin/env python3
"""初始化演示 root 用户（使用创世根码注册）"""
import os

from dotenv import load_dotenv
load_dotenv()

from backend.db.database import GENESIS_CODE, init_db
from backend.db import crud
from backend.core import credentials
from backend.exceptions import ConflictError
from backend.utils.auth import issue_token

EMAIL = os.getenv("DEMO_EMAIL", "root@vesper.local")
PASSWORD = os.getenv("DEMO_PASSWORD", "vesper-root")
NICKNAME = "Root"


def main():
    print("=" * 50)
    print("初始化演示 root 用户")
    print("=" * 50)

    # 初始化数据库
    init_db()

    user = crud.get_user_by_email(EMAIL)
    if user and not user.is_pending:
        # 已注册，直接登录
        user, role = credentials.login(EMAIL, PASSWORD)
        print("\n用户已存在，直接登录")
    else:
        code = credentials.request_verification(EMAIL)
        try:
            user, role = credentials.complete_registration(
                EMAIL, code, PASSWORD, NICKNAME, developer_code=GENESIS_CODE
            )
        except ConflictError:
            # 创世码已被其他账号绑定，按普通用户注册
            code = credentials.request_verification(EMAIL)
            user, role = credentials.complete_registration(EMAIL, code, PASSWORD, NICKNAME)
            print(f"\n⚠️ 创世码 {GENESIS_CODE} 已被绑定，按普通用户注册")

    token = issue_token(user, role)

    print(f"\n最终状态:")
    print(f"  ID: {user.id}")
    print(f"  邮箱: {user.email}")
    print(f"  角色: {role}")
    print(f"\nTOKEN:\n{token}")

    return user.id, token


if __name__ == "__main__":
    main()
