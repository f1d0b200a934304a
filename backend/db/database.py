"""
数据库连接和初始化
"""
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

# 数据库路径
DB_PATH = Path(os.getenv("DATABASE_PATH", Path(__file__).parent.parent.parent / "data" / "app.db"))

# 创世根码（首次启动时写入，只写一次）
GENESIS_CODE = os.getenv("GENESIS_CODE", "Vesper")

# 写锁等待时间（秒）
BUSY_TIMEOUT = 10.0


def get_connection() -> sqlite3.Connection:
    """获取数据库连接（自动提交模式，事务由 get_db 显式控制）"""
    # 确保目录存在
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row  # 返回字典形式
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


@contextmanager
def get_db(readonly: bool = False):
    """
    数据库事务上下文管理器

    写操作以 BEGIN IMMEDIATE 开启事务，进入时即持有写锁，
    所有写操作串行执行；条件更新的 rowcount 才是判定依据。
    readonly=True 时使用普通 BEGIN，只读查询不等待写锁。
    """
    conn = get_connection()
    try:
        conn.execute('BEGIN' if readonly else 'BEGIN IMMEDIATE')
        yield conn
        conn.execute('COMMIT')
    except Exception:
        if conn.in_transaction:
            conn.execute('ROLLBACK')
        raise
    finally:
        conn.close()


def ensure_column(conn: sqlite3.Connection, table: str, name: str, definition: str):
    """旧库补列"""
    columns = conn.execute(f'PRAGMA table_info({table})').fetchall()
    if not any(c['name'] == name for c in columns):
        conn.execute(f'ALTER TABLE {table} ADD COLUMN {definition}')


def init_db():
    """初始化数据库表，并写入创世根码"""
    with get_db() as conn:
        cursor = conn.cursor()

        # 创建 users 表
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL DEFAULT '',
                nickname TEXT NOT NULL,
                verified INTEGER DEFAULT 0,
                developer_code_id TEXT,
                is_admin INTEGER DEFAULT 0,
                is_root INTEGER DEFAULT 0,
                vip_level TEXT DEFAULT 'none',
                vip_expiry TEXT,
                status TEXT DEFAULT 'active',
                created_at TEXT,
                updated_at TEXT,
                reset_token TEXT,
                reset_expires TEXT,
                verification_code TEXT,
                verification_expires TEXT,
                device_fingerprint TEXT,
                UNIQUE(email, device_fingerprint),
                FOREIGN KEY (developer_code_id) REFERENCES developer_codes(id)
            )
        ''')

        # 创建 developer_codes 表（开发者码）
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS developer_codes (
                id TEXT PRIMARY KEY,
                code TEXT UNIQUE NOT NULL,
                level TEXT NOT NULL,
                generated_by TEXT,
                bound_user_id TEXT,
                bound_at TEXT,
                is_active INTEGER DEFAULT 1,
                max_generations INTEGER,
                note TEXT,
                created_at TEXT,
                FOREIGN KEY (generated_by) REFERENCES users(id),
                FOREIGN KEY (bound_user_id) REFERENCES users(id)
            )
        ''')

        # 创建 coupons 表（优惠券）
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS coupons (
                id TEXT PRIMARY KEY,
                code TEXT UNIQUE NOT NULL,
                type TEXT NOT NULL,
                value INTEGER NOT NULL,
                duration_days INTEGER,
                uses_remaining INTEGER,
                created_by TEXT,
                created_at TEXT,
                FOREIGN KEY (created_by) REFERENCES users(id)
            )
        ''')

        # 创建 vip_orders 表
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS vip_orders (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                plan TEXT NOT NULL,
                amount INTEGER NOT NULL,
                channel TEXT NOT NULL,
                status TEXT NOT NULL,
                coupon_id TEXT,
                created_at TEXT,
                updated_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (coupon_id) REFERENCES coupons(id)
            )
        ''')

        # 创建 audit_log 表（只追加）
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_log (
                id TEXT PRIMARY KEY,
                actor_id TEXT,
                action TEXT NOT NULL,
                target TEXT,
                detail TEXT,
                created_at TEXT,
                FOREIGN KEY (actor_id) REFERENCES users(id)
            )
        ''')

        ensure_column(conn, 'users', 'is_root', 'is_root INTEGER DEFAULT 0')
        ensure_column(conn, 'users', 'device_fingerprint', 'device_fingerprint TEXT')
        ensure_column(conn, 'users', 'developer_code_id', 'developer_code_id TEXT')

        # 创建索引
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_codes_bound_user ON developer_codes(bound_user_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_user_id ON vip_orders(user_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_status ON vip_orders(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_log(created_at)')

        # 创世根码：code 唯一约束保证只插入一次
        cursor.execute('''
            INSERT OR IGNORE INTO developer_codes
                (id, code, level, generated_by, is_active, max_generations, note, created_at)
            VALUES (?, ?, 'root', NULL, 1, NULL, ?, ?)
        ''', (str(uuid.uuid4()), GENESIS_CODE, 'Genesis code with unlimited control',
              datetime.now().isoformat()))
