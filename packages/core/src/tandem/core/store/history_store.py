"""HistoryStore SQLite 实现

task_history 表 append-only：只允许插入，不允许更新或删除。
entry_id 为 ULID，同一毫秒内也保持时间有序。
"""

import json

import aiosqlite

from ..clock import to_iso
from ..models.enums import Actor
from ..models.history import HistoryEntry

_HISTORY_COLUMNS: tuple[str, ...] = (
    "entry_id",
    "task_id",
    "action",
    "actor",
    "timestamp",
    "notes",
    "session_id",
    "session_log_path",
    "old_value",
    "new_value",
    "tools_used",
)


class SqliteHistoryStore:
    """HistoryStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, entry: HistoryEntry) -> None:
        """追加一条历史记录

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        placeholders = ", ".join("?" for _ in _HISTORY_COLUMNS)
        await self._conn.execute(
            f"INSERT INTO task_history ({', '.join(_HISTORY_COLUMNS)}) "
            f"VALUES ({placeholders})",
            (
                entry.entry_id,
                entry.task_id,
                entry.action,
                entry.actor.value,
                to_iso(entry.timestamp),
                entry.notes,
                entry.session_id,
                entry.session_log_path,
                entry.old_value,
                entry.new_value,
                json.dumps(entry.tools_used) if entry.tools_used is not None else None,
            ),
        )

    async def get_history(self, task_id: str) -> list[HistoryEntry]:
        """查询指定任务的全部历史，按时间正序"""
        cursor = await self._conn.execute(
            f"SELECT {', '.join(_HISTORY_COLUMNS)} FROM task_history "
            "WHERE task_id = ? ORDER BY timestamp ASC, entry_id ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def count_actions_since(self, actions: list[str], since: str) -> int:
        """统计 since（ISO 字符串）之后指定 action 的条目数"""
        placeholders = ", ".join("?" for _ in actions)
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM task_history "
            f"WHERE action IN ({placeholders}) AND timestamp >= ?",
            (*actions, since),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> HistoryEntry:
        """将数据库行转换为 HistoryEntry 模型"""
        tools = json.loads(row[10]) if row[10] else None
        return HistoryEntry(
            entry_id=row[0],
            task_id=row[1],
            action=row[2],
            actor=Actor(row[3]),
            timestamp=row[4],
            notes=row[5],
            session_id=row[6],
            session_log_path=row[7],
            old_value=row[8],
            new_value=row[9],
            tools_used=tools,
        )
