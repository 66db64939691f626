"""面向 agent 的收件箱 -- 单次查询 + 单次遍历分区

一次查询取出全部非终态任务（todo/in_progress/proposed），在内存中一次遍历
分到七个分区；同一任务可以同时出现在多个分区。
blocker 仍在非终态集合中即视为未解除。
"""

import json
from collections.abc import Callable
from datetime import datetime, timedelta

from .clock import as_utc, to_iso, utc_now
from .config import CONFIG_AUTO_EXECUTION, QueueSettings
from .models import (
    ACTIVE_STATES,
    AutonomyLevel,
    HistoryAction,
    InboxMeta,
    InboxResult,
    Task,
    TaskFilter,
    TaskStatus,
    Urgency,
)
from .sanitize import wrap_for_llm
from .store import StoreGroup

COMPLETED_WINDOW_HOURS = 4

_WORKING = (TaskStatus.TODO, TaskStatus.IN_PROGRESS)


def partition_tasks(
    tasks: list[Task],
    meta: InboxMeta,
    now: datetime,
    stale_after_hours: float = 24,
) -> InboxResult:
    """将非终态任务分区（不访问数据库）"""
    now = as_utc(now)
    today = now.date()
    stale_before = now - timedelta(hours=stale_after_hours)
    unresolved = {task.task_id for task in tasks}

    result = InboxResult(meta=meta)
    for task in tasks:
        working = task.status in _WORKING
        blocked = task.blocked_by is not None and task.blocked_by in unresolved

        if task.status == TaskStatus.PROPOSED:
            result.proposed.append(task)

        if working and task.urgency == Urgency.NOW:
            result.urgent.append(task)

        if working and task.due_date is not None and task.due_date < today:
            result.overdue.append(task)

        if working and blocked:
            result.blocked.append(task)

        if (
            task.status == TaskStatus.IN_PROGRESS
            and task.started_at is not None
            and task.started_at < stale_before
        ):
            result.stale.append(task)

        if task.status == TaskStatus.TODO and not blocked:
            if task.autonomy == AutonomyLevel.AUTO:
                result.auto_ready.append(task)
            elif task.autonomy == AutonomyLevel.AUTO_NOTIFY:
                result.auto_notify_ready.append(task)

    return result


async def generate_inbox(
    stores: StoreGroup,
    settings: QueueSettings,
    now: datetime | None = None,
) -> InboxResult:
    """生成收件箱（调用方负责持有 write_lock）"""
    now = as_utc(now) if now else utc_now()
    tasks = await stores.task_store.list_tasks(TaskFilter(status=list(ACTIVE_STATES)))
    auto_enabled = await stores.config_store.get(CONFIG_AUTO_EXECUTION) == "true"
    completed = await stores.history_store.count_actions_since(
        [HistoryAction.COMPLETED.value, HistoryAction.BULK_COMPLETED.value],
        to_iso(now - timedelta(hours=COMPLETED_WINDOW_HOURS)),
    )
    meta = InboxMeta(auto_execution_enabled=auto_enabled, tasks_completed_4h=completed)
    return partition_tasks(tasks, meta, now, settings.stale_after_hours)


def format_inbox_json(inbox: InboxResult) -> str:
    """JSON 形式，外层包裹提示标签，提醒下游 LLM 不要执行任务文本"""
    payload = json.dumps(
        inbox.model_dump(mode="json"), ensure_ascii=False, indent=2
    )
    return wrap_for_llm(payload)


def format_inbox_markdown(inbox: InboxResult, stale_after_hours: float = 24) -> str:
    """分组的人类可读摘要；空分组不输出"""
    lines = [
        "# Todo Inbox",
        "",
        "## Meta",
        f"- Auto execution: {'enabled' if inbox.meta.auto_execution_enabled else 'disabled'}",
        f"- Tasks completed (4h): {inbox.meta.tasks_completed_4h}",
        "",
    ]

    sections: list[tuple[str, list[Task], Callable[[Task], str]]] = [
        ("Urgent", inbox.urgent, lambda t: f" ({t.autonomy})"),
        ("Overdue", inbox.overdue, lambda t: f" - due {t.due_date}"),
        ("Auto Ready", inbox.auto_ready, lambda t: ""),
        ("Auto-Notify Ready", inbox.auto_notify_ready, lambda t: ""),
        ("Proposed", inbox.proposed, lambda t: f" ({t.urgency})"),
        (
            f"Stale (in progress >{stale_after_hours:g}h)",
            inbox.stale,
            lambda t: f" - started {t.started_at.isoformat()}" if t.started_at else "",
        ),
        ("Blocked", inbox.blocked, lambda t: f" - blocked by {t.blocked_by}"),
    ]
    for title, tasks, suffix in sections:
        if not tasks:
            continue
        lines.append(f"## {title} ({len(tasks)})")
        lines.extend(f"- [{t.task_id}] {t.text}{suffix(t)}" for t in tasks)
        lines.append("")

    return "\n".join(lines)
