"""阻塞关系的环检测

从候选 blocker 沿 blocked_by 链向上走；遇到 task_id 本身即成环。
visited 集合用于在与新边无关的既有环上提前终止。
"""

from .store.protocols import TaskStore


async def would_create_cycle(
    task_store: TaskStore,
    task_id: str,
    blocker_id: str,
    max_depth: int = 1000,
) -> bool:
    """若令 task_id 被 blocker_id 阻塞会形成环，返回 True

    链长度超过 max_depth 时按成环处理。
    """
    visited: set[str] = set()
    current: str | None = blocker_id
    depth = 0

    while current is not None:
        if current == task_id:
            return True
        if current in visited:
            return False
        if depth >= max_depth:
            return True
        visited.add(current)
        depth += 1
        current = await task_store.get_blocked_by(current)

    return False
