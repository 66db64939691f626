"""ConfigStore SQLite 实现 -- config 键值表与咨询锁

锁是 config 表中的一个槽位：value 为 NULL 表示空闲，否则为持有者标识。
获取锁是一条带 `value IS NULL` 条件的 UPDATE，检查和写入不可分。
"""

import aiosqlite


class SqliteConfigStore:
    """ConfigStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get(self, key: str) -> str | None:
        cursor = await self._conn.execute(
            "SELECT value FROM config WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str | None) -> None:
        """写入配置（不提交事务）"""
        await self._conn.execute(
            "INSERT INTO config (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    async def try_acquire(self, slot: str, holder: str) -> bool:
        """尝试占用锁槽位

        Returns:
            True 如果本次调用拿到了锁
        """
        await self._conn.execute(
            "INSERT OR IGNORE INTO config (key, value) VALUES (?, NULL)",
            (slot,),
        )
        cursor = await self._conn.execute(
            "UPDATE config SET value = ? WHERE key = ? AND value IS NULL",
            (holder, slot),
        )
        return cursor.rowcount > 0

    async def release(self, slot: str) -> None:
        """无条件释放锁槽位"""
        await self._conn.execute(
            "UPDATE config SET value = NULL WHERE key = ?",
            (slot,),
        )
