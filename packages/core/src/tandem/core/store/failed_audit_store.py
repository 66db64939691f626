"""_failed_audits 兜底表

审计文件写入失败时，每条审计记录单独落入此表，供事后核查。
"""

import json

import aiosqlite

from ..clock import to_iso
from ..models.history import AuditRecord, FailedAudit


class SqliteFailedAuditStore:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, record: AuditRecord, error: str) -> None:
        """写入一条失败的审计记录（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO _failed_audits (timestamp, action, actor, task_id, details, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                to_iso(record.timestamp),
                record.action,
                record.actor.value,
                record.task_id,
                record.model_dump_json(),
                error,
            ),
        )

    async def list_all(self) -> list[FailedAudit]:
        cursor = await self._conn.execute(
            "SELECT id, timestamp, action, actor, task_id, details, error "
            "FROM _failed_audits ORDER BY id ASC"
        )
        rows = await cursor.fetchall()
        return [
            FailedAudit(
                id=row[0],
                timestamp=row[1],
                action=row[2],
                actor=row[3],
                task_id=row[4],
                details=json.loads(row[5]) if row[5] else {},
                error=row[6],
            )
            for row in rows
        ]
