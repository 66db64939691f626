"""Store Protocol 接口定义

TaskStore、HistoryStore、ConfigStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
环检测与限流只依赖这里声明的方法。
"""

from typing import Any, Protocol

from ..models.enums import Actor, TaskStatus
from ..models.history import HistoryEntry
from ..models.task import Task, TaskFilter


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(self, filters: TaskFilter | None = None) -> list[Task]:
        """按筛选条件查询任务"""
        ...

    async def get_blocked_by(self, task_id: str) -> str | None:
        """任务的 blocker ID"""
        ...

    async def update_columns(self, task_id: str, columns: dict[str, Any]) -> int:
        ...

    async def transition_status(
        self,
        task_id: str,
        to_status: TaskStatus,
        from_statuses: set[TaskStatus],
        columns: dict[str, Any] | None = None,
        require_unblocked: bool = False,
    ) -> bool:
        """条件状态流转，返回是否生效"""
        ...

    async def count_proposed(self, added_by: Actor = Actor.AGENT) -> int:
        """处于 proposed 的任务数"""
        ...


class HistoryStore(Protocol):
    """History 存储接口

    task_history 表 append-only：只允许插入，不允许更新或删除。
    """

    async def append(self, entry: HistoryEntry) -> None:
        ...

    async def get_history(self, task_id: str) -> list[HistoryEntry]:
        ...


class ConfigStore(Protocol):
    """Config 键值存储接口（含咨询锁槽位）"""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str | None) -> None:
        ...

    async def try_acquire(self, slot: str, holder: str) -> bool:
        """槽位为空时写入持有者，返回是否拿到锁"""
        ...

    async def release(self, slot: str) -> None:
        ...
