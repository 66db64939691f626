"""SQLite 数据库初始化

PRAGMA 配置 + config/tasks/task_history/_failed_audits 四张表 DDL + 索引创建。
schema_version 记录在 config 表中。
使用 aiosqlite 异步操作。
"""

import aiosqlite

from ..config import (
    CONFIG_AUTO_EXECUTION,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_LOCK_SLOT,
)

SCHEMA_VERSION = 1

# config 表 DDL（最先创建，用于记录 schema_version）
_CONFIG_DDL = """
CREATE TABLE IF NOT EXISTS config (
    key    TEXT PRIMARY KEY,
    value  TEXT
);
"""

# tasks 表 DDL -- CHECK 约束是最后一道防线，正常路径在写入前已校验
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id          TEXT PRIMARY KEY
                     CHECK (length(task_id) = 8 AND task_id NOT GLOB '*[^a-z0-9]*'),
    text             TEXT NOT NULL
                     CHECK (length(trim(text)) > 0)
                     CHECK (length(text) <= 1000),
    status           TEXT NOT NULL DEFAULT 'todo'
                     CHECK (status IN ('proposed','todo','in_progress','done','archived')),
    autonomy         TEXT NOT NULL DEFAULT 'collab'
                     CHECK (autonomy IN ('auto','auto-notify','collab')),
    urgency          TEXT NOT NULL DEFAULT 'whenever'
                     CHECK (urgency IN ('now','soon','whenever','someday')),
    project          TEXT
                     CHECK (project IS NULL OR (substr(project, 1, 1) = '+'
                            AND length(project) <= 50)),
    context          TEXT
                     CHECK (context IS NULL OR (substr(context, 1, 1) = '@'
                            AND length(context) <= 50)),
    due_date         TEXT,
    blocked_by       TEXT REFERENCES tasks(task_id),
    added_by         TEXT NOT NULL DEFAULT 'human'
                     CHECK (added_by IN ('human','agent')),
    created_at       TEXT NOT NULL,
    started_at       TEXT,
    completed_at     TEXT,
    notes            TEXT CHECK (notes IS NULL OR length(notes) <= 5000),
    attempts         INTEGER NOT NULL DEFAULT 0,
    last_attempt_at  TEXT,
    tokens_used      INTEGER NOT NULL DEFAULT 0,
    duration_sec     INTEGER NOT NULL DEFAULT 0
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_autonomy ON tasks(autonomy);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_urgency ON tasks(urgency);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_blocked_by ON tasks(blocked_by);",
]

# task_history 表 DDL（append-only）
_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS task_history (
    entry_id          TEXT PRIMARY KEY,
    task_id           TEXT NOT NULL,
    action            TEXT NOT NULL,
    actor             TEXT NOT NULL CHECK (actor IN ('human','agent')),
    timestamp         TEXT NOT NULL,
    notes             TEXT,
    session_id        TEXT,
    session_log_path  TEXT,
    old_value         TEXT,
    new_value         TEXT,
    tools_used        TEXT,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_HISTORY_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_history_task ON task_history(task_id);",
    "CREATE INDEX IF NOT EXISTS idx_history_timestamp ON task_history(timestamp);",
]

# 审计文件写入失败时的兜底表
_FAILED_AUDITS_DDL = """
CREATE TABLE IF NOT EXISTS _failed_audits (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp  TEXT NOT NULL,
    action     TEXT NOT NULL,
    actor      TEXT NOT NULL,
    task_id    TEXT NOT NULL,
    details    TEXT,
    error      TEXT
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 按 schema_version 迁移

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA synchronous = NORMAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_CONFIG_DDL)
    current = await get_schema_version(conn)
    if current < 1:
        await _migrate_to_v1(conn)
        await conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            (CONFIG_SCHEMA_VERSION, str(SCHEMA_VERSION)),
        )

    await conn.commit()


async def _migrate_to_v1(conn: aiosqlite.Connection) -> None:
    """创建表、索引并写入默认 config"""
    await conn.execute(_TASKS_DDL)
    await conn.execute(_HISTORY_DDL)
    await conn.execute(_FAILED_AUDITS_DDL)

    for idx_sql in _TASKS_INDEXES + _HISTORY_INDEXES:
        await conn.execute(idx_sql)

    await conn.execute(
        "INSERT OR IGNORE INTO config (key, value) VALUES (?, NULL)",
        (DEFAULT_LOCK_SLOT,),
    )
    await conn.execute(
        "INSERT OR IGNORE INTO config (key, value) VALUES (?, 'true')",
        (CONFIG_AUTO_EXECUTION,),
    )


async def get_schema_version(conn: aiosqlite.Connection) -> int:
    """读取 config 中的 schema_version，缺失时为 0"""
    cursor = await conn.execute(
        "SELECT value FROM config WHERE key = ?",
        (CONFIG_SCHEMA_VERSION,),
    )
    row = await cursor.fetchone()
    if row is None or row[0] is None:
        return 0
    return int(row[0])


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
