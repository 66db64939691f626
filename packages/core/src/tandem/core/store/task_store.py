"""TaskStore SQLite 实现

仅提供数据库操作；状态机规则、清洗和审计由 TaskService 负责。
所有 SQL 参数化。动态拼接的只有本模块内的常量列名。
此处方法均不提交事务，由调用方（StoreGroup.transaction）管理。
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any

import aiosqlite

from ..clock import to_iso
from ..models.enums import Actor, AutonomyLevel, TaskStatus
from ..models.task import Task, TaskFilter

_TASK_COLUMNS: tuple[str, ...] = (
    "task_id",
    "text",
    "status",
    "autonomy",
    "urgency",
    "project",
    "context",
    "due_date",
    "blocked_by",
    "added_by",
    "created_at",
    "started_at",
    "completed_at",
    "notes",
    "attempts",
    "last_attempt_at",
    "tokens_used",
    "duration_sec",
)

# update_columns / transition_status 允许写入的列
WRITABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "text",
        "status",
        "autonomy",
        "urgency",
        "project",
        "context",
        "due_date",
        "blocked_by",
        "started_at",
        "completed_at",
        "notes",
        "attempts",
        "last_attempt_at",
        "tokens_used",
        "duration_sec",
    }
)

_SELECT_TASKS = f"SELECT {', '.join(_TASK_COLUMNS)} FROM tasks"

# urgency 排名，其次创建时间，再次插入顺序
_ORDER_BY = (
    " ORDER BY CASE urgency"
    " WHEN 'now' THEN 0 WHEN 'soon' THEN 1"
    " WHEN 'whenever' THEN 2 WHEN 'someday' THEN 3 END,"
    " created_at ASC, rowid ASC"
)

# blocker 仍未完成（非 done/archived）
_HAS_UNRESOLVED_BLOCKER = (
    "EXISTS (SELECT 1 FROM tasks AS b WHERE b.task_id = tasks.blocked_by"
    " AND b.status NOT IN ('done', 'archived'))"
)


def to_db_value(value: Any) -> Any:
    """Python 值转 SQLite 存储值"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps(value, ensure_ascii=False)
    return value


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        values = task.model_dump()
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        await self._conn.execute(
            f"INSERT INTO tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
            tuple(to_db_value(values[col]) for col in _TASK_COLUMNS),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASKS} WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def task_exists(self, task_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        return await cursor.fetchone() is not None

    async def find_by_prefix(self, prefix: str) -> list[Task]:
        """按 ID 前缀查询（prefix 需已校验为小写字母数字，不含 LIKE 通配符）"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASKS} WHERE task_id LIKE ? ORDER BY task_id",
            (f"{prefix}%",),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_tasks(self, filters: TaskFilter | None = None) -> list[Task]:
        """按筛选条件查询任务，按 urgency 排名 + 创建时间排序"""
        filters = filters or TaskFilter()
        clauses: list[str] = []
        params: list[Any] = []

        if filters.status is not None:
            statuses = (
                filters.status if isinstance(filters.status, list) else [filters.status]
            )
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)

        if filters.autonomy is not None:
            clauses.append("autonomy = ?")
            params.append(filters.autonomy.value)

        if filters.urgency is not None:
            clauses.append("urgency = ?")
            params.append(filters.urgency.value)

        if filters.project is not None:
            clauses.append("project = ?")
            params.append(filters.project)

        if filters.added_by is not None:
            clauses.append("added_by = ?")
            params.append(filters.added_by.value)

        if filters.blocked is True:
            clauses.append("blocked_by IS NOT NULL")
        elif filters.blocked is False:
            clauses.append("blocked_by IS NULL")

        if filters.ready:
            clauses.append("status IN (?, ?) AND blocked_by IS NULL")
            params.extend([TaskStatus.TODO.value, TaskStatus.IN_PROGRESS.value])

        query = _SELECT_TASKS
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += _ORDER_BY

        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def get_next_task(self, auto_only: bool = False) -> Task | None:
        """优先级最高的可执行 todo 任务"""
        query = f"{_SELECT_TASKS} WHERE status = ? AND blocked_by IS NULL"
        params: list[Any] = [TaskStatus.TODO.value]
        if auto_only:
            query += " AND autonomy IN (?, ?)"
            params.extend([AutonomyLevel.AUTO.value, AutonomyLevel.AUTO_NOTIFY.value])
        query += _ORDER_BY + " LIMIT 1"

        cursor = await self._conn.execute(query, params)
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def get_blocked_by(self, task_id: str) -> str | None:
        """任务的 blocker ID；任务不存在或未被阻塞时返回 None"""
        cursor = await self._conn.execute(
            "SELECT blocked_by FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def update_columns(self, task_id: str, columns: dict[str, Any]) -> int:
        """更新若干列，返回受影响行数"""
        if not columns:
            return 0
        set_clause, params = self._set_clause(columns)
        cursor = await self._conn.execute(
            f"UPDATE tasks SET {set_clause} WHERE task_id = ?",
            (*params, task_id),
        )
        return cursor.rowcount

    async def transition_status(
        self,
        task_id: str,
        to_status: TaskStatus,
        from_statuses: set[TaskStatus],
        columns: dict[str, Any] | None = None,
        require_unblocked: bool = False,
    ) -> bool:
        """条件更新：仅当当前状态在 from_statuses 中（且可选地未被阻塞）时流转

        检查和写入是同一条 UPDATE，避免 check-then-act 竞态。

        Returns:
            True 如果本次调用完成了流转
        """
        set_clause, params = self._set_clause({**(columns or {}), "status": to_status})
        expected = sorted(s.value for s in from_statuses)
        query = (
            f"UPDATE tasks SET {set_clause} WHERE task_id = ?"
            f" AND status IN ({', '.join('?' for _ in expected)})"
        )
        if require_unblocked:
            query += f" AND NOT {_HAS_UNRESOLVED_BLOCKER}"
        cursor = await self._conn.execute(query, (*params, task_id, *expected))
        return cursor.rowcount > 0

    async def reserve_retry(
        self,
        task_id: str,
        max_attempts: int,
        cooldown_cutoff: str,
        started_at: str,
    ) -> bool:
        """原子地检查重试资格并占位（todo -> in_progress）

        条件：status = todo、attempts < max_attempts、从未失败过或上次失败早于
        cooldown_cutoff、且没有未完成的 blocker。
        """
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks
            SET status = ?, started_at = ?
            WHERE task_id = ?
              AND status = ?
              AND attempts < ?
              AND (last_attempt_at IS NULL OR last_attempt_at < ?)
              AND NOT {_HAS_UNRESOLVED_BLOCKER}
            """,
            (
                TaskStatus.IN_PROGRESS.value,
                started_at,
                task_id,
                TaskStatus.TODO.value,
                max_attempts,
                cooldown_cutoff,
            ),
        )
        return cursor.rowcount > 0

    async def unblock_dependents(self, task_id: str) -> list[str]:
        """清除所有被 task_id 阻塞的任务的 blocked_by，返回被解除阻塞的任务 ID"""
        cursor = await self._conn.execute(
            "SELECT task_id FROM tasks WHERE blocked_by = ? ORDER BY rowid",
            (task_id,),
        )
        dependents = [row[0] for row in await cursor.fetchall()]
        if dependents:
            await self._conn.execute(
                "UPDATE tasks SET blocked_by = NULL WHERE blocked_by = ?",
                (task_id,),
            )
        return dependents

    async def count_proposed(self, added_by: Actor = Actor.AGENT) -> int:
        """处于 proposed 的任务数（按创建者过滤）"""
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE status = ? AND added_by = ?",
            (TaskStatus.PROPOSED.value, added_by.value),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_all(self) -> int:
        cursor = await self._conn.execute("SELECT COUNT(*) FROM tasks")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_by_status(self) -> dict[str, int]:
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) FROM tasks GROUP BY status"
        )
        return {row[0]: row[1] for row in await cursor.fetchall()}

    async def count_active_by_autonomy(self) -> dict[str, int]:
        """todo/in_progress 任务按 autonomy 计数"""
        cursor = await self._conn.execute(
            "SELECT autonomy, COUNT(*) FROM tasks WHERE status IN (?, ?) GROUP BY autonomy",
            (TaskStatus.TODO.value, TaskStatus.IN_PROGRESS.value),
        )
        return {row[0]: row[1] for row in await cursor.fetchall()}

    @staticmethod
    def _set_clause(columns: dict[str, Any]) -> tuple[str, list[Any]]:
        unknown = set(columns) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not a writable task column: {sorted(unknown)}")
        names = sorted(columns)
        clause = ", ".join(f"{name} = ?" for name in names)
        return clause, [to_db_value(columns[name]) for name in names]

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task.model_validate(dict(zip(_TASK_COLUMNS, row, strict=True)))
