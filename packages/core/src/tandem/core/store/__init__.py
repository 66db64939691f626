"""Tandem Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

from .config_store import SqliteConfigStore
from .failed_audit_store import SqliteFailedAuditStore
from .history_store import SqliteHistoryStore
from .protocols import ConfigStore, HistoryStore, TaskStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import atomic, translate_integrity_error

log = structlog.get_logger()


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接和写锁"""

    def __init__(self, conn: aiosqlite.Connection, db_path: str) -> None:
        self.conn = conn
        self.db_path = db_path
        self.write_lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn)
        self.history_store = SqliteHistoryStore(conn)
        self.config_store = SqliteConfigStore(conn)
        self.failed_audit_store = SqliteFailedAuditStore(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """写事务：持有 write_lock，成功提交，异常回滚"""
        async with atomic(self.conn, self.write_lock) as conn:
            yield conn

    async def close(self) -> None:
        await self.conn.close()


def _restrict_permissions(path: Path, mode: int) -> None:
    """收紧文件权限；失败只记录 warning"""
    try:
        os.chmod(path, mode)
    except OSError as e:
        log.warning(
            "permission_setup_failed",
            path=str(path),
            error_type=type(e).__name__,
        )


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在（仅属主可访问）
    db_dir = Path(db_path).parent
    db_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    _restrict_permissions(Path(db_path), 0o600)

    return StoreGroup(conn=conn, db_path=db_path)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteHistoryStore",
    "SqliteConfigStore",
    "SqliteFailedAuditStore",
    "TaskStore",
    "HistoryStore",
    "ConfigStore",
    "init_db",
    "atomic",
    "translate_integrity_error",
]
