"""TaskService -- 任务生命周期业务逻辑

每个写操作遵循同一流程：
1. 清洗/校验输入（失败时不写入任何数据）
2. 在写事务内读取当前状态并检查不变量
3. 条件更新 + 追加 history（同一事务）
4. 事务提交后写审计日志

所有操作都接受完整 ID 或唯一前缀。
"""

import json
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, TypeVar

import structlog
from ulid import ULID

from .audit import AuditLog
from .clock import to_iso, utc_now
from .config import (
    CONFIG_AUTO_EXECUTION,
    DEFAULT_LOCK_SLOT,
    LIMITS,
    QueueSettings,
    get_audit_path,
    get_db_path,
    load_queue_settings,
)
from .exceptions import (
    AmbiguousIdError,
    ErrorCode,
    InvalidInputError,
    InvalidTransitionError,
    PermissionDeniedError,
    TaskBlockedError,
    TaskNotFoundError,
)
from .graph import would_create_cycle
from .ids import generate_task_id
from .inbox import generate_inbox
from .models import (
    TERMINAL_STATES,
    Actor,
    AutonomyLevel,
    HistoryAction,
    HistoryEntry,
    InboxResult,
    Task,
    TaskFilter,
    TaskStatus,
    Urgency,
    validate_transition,
)
from .rate_limit import ProposalRateLimiter
from .sanitize import (
    is_id_prefix,
    sanitize,
    sanitize_notes,
    sanitize_tag,
    sanitize_text,
    validate_due_date,
    validate_task_id,
)
from .store import StoreGroup, create_store_group

log = structlog.get_logger()

# edit 允许的外部键 -> 内部列
EDITABLE_FIELDS: dict[str, str] = {
    "text": "text",
    "urgency": "urgency",
    "project": "project",
    "context": "context",
    "due_date": "due_date",
    "dueDate": "due_date",
    "notes": "notes",
}

_WORKABLE = {TaskStatus.TODO, TaskStatus.IN_PROGRESS}
_ARCHIVABLE = {TaskStatus.PROPOSED, TaskStatus.TODO, TaskStatus.IN_PROGRESS}


E = TypeVar("E", bound=StrEnum)


def _coerce(enum_cls: type[E], value: E | str, code: ErrorCode) -> E:
    """字符串转枚举；非法值抛 InvalidInputError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(
            code,
            f"Invalid {enum_cls.__name__}: {value!r}. Must be one of: {allowed}",
            {"value": str(value)},
        ) from None


def _append_dated_note(existing: str | None, note: str, stamp: str) -> str:
    line = f"[{stamp}] {note}"
    return f"{existing}\n{line}" if existing else line


class TaskService:
    """任务队列业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        audit: AuditLog,
        settings: QueueSettings | None = None,
    ) -> None:
        self._stores = store_group
        self._audit = audit
        self._settings = settings or QueueSettings()
        self._rate_limiter = ProposalRateLimiter(
            store_group.task_store,
            store_group.config_store,
            max_proposed=self._settings.max_proposed,
            cooldown_s=self._settings.proposal_cooldown_s,
        )

    @classmethod
    async def open(
        cls,
        db_path: str | None = None,
        audit_path: str | None = None,
        settings: QueueSettings | None = None,
    ) -> "TaskService":
        """按路径（默认取环境变量）打开存储并创建服务"""
        settings = settings or load_queue_settings()
        stores = await create_store_group(db_path or get_db_path())
        audit = AuditLog(
            stores,
            audit_path or get_audit_path(),
            batch_size=settings.audit_batch_size,
            flush_ms=settings.audit_flush_ms,
        )
        return cls(stores, audit, settings)

    @property
    def stores(self) -> StoreGroup:
        return self._stores

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    async def close(self) -> None:
        """落盘剩余审计条目后关闭数据库连接"""
        await self._audit.aclose()
        await self._stores.close()

    # ------------------------------------------------------------------
    # 读操作
    # ------------------------------------------------------------------

    async def resolve_task_id(self, id_or_prefix: str) -> str | None:
        """完整 ID 或唯一前缀 -> 完整 ID

        Raises:
            AmbiguousIdError: 前缀匹配到多个任务
        """
        async with self._stores.write_lock:
            return await self._resolve(id_or_prefix)

    async def get_task(self, id_or_prefix: str) -> Task | None:
        async with self._stores.write_lock:
            task_id = await self._resolve(id_or_prefix)
            if task_id is None:
                return None
            return await self._stores.task_store.get_task(task_id)

    async def list_tasks(self, filters: TaskFilter | None = None) -> list[Task]:
        async with self._stores.write_lock:
            return await self._stores.task_store.list_tasks(filters)

    async def get_next_task(self, auto_only: bool = False) -> Task | None:
        """优先级最高且可执行的 todo 任务"""
        async with self._stores.write_lock:
            return await self._stores.task_store.get_next_task(auto_only)

    async def get_history(self, id_or_prefix: str) -> list[HistoryEntry]:
        """任务历史，按时间正序"""
        async with self._stores.write_lock:
            task = await self._require_task(id_or_prefix)
            return await self._stores.history_store.get_history(task.task_id)

    async def get_stats(self) -> dict[str, Any]:
        async with self._stores.write_lock:
            task_store = self._stores.task_store
            return {
                "total": await task_store.count_all(),
                "by_status": await task_store.count_by_status(),
                "by_autonomy": await task_store.count_active_by_autonomy(),
            }

    async def count_completed_since(self, hours: float) -> int:
        """最近 hours 小时内完成（含批量完成）的任务数"""
        since = to_iso(utc_now() - timedelta(hours=hours))
        async with self._stores.write_lock:
            return await self._stores.history_store.count_actions_since(
                [HistoryAction.COMPLETED.value, HistoryAction.BULK_COMPLETED.value],
                since,
            )

    async def generate_inbox(self, now: datetime | None = None) -> InboxResult:
        """七路分区收件箱"""
        async with self._stores.write_lock:
            return await generate_inbox(self._stores, self._settings, now=now)

    # ------------------------------------------------------------------
    # 创建 / 编辑
    # ------------------------------------------------------------------

    async def create_task(
        self,
        text: str,
        added_by: Actor | str,
        *,
        autonomy: AutonomyLevel | str = AutonomyLevel.COLLAB,
        urgency: Urgency | str = Urgency.WHENEVER,
        project: str | None = None,
        context: str | None = None,
        due_date: str | None = None,
        blocked_by: str | None = None,
        confirmed: bool = False,
    ) -> str:
        """创建任务

        agent 创建的任务一律为 proposed（忽略 confirmed，不允许自我批准），
        human 创建的任务直接为 todo。

        Returns:
            新任务 ID
        """
        actor = _coerce(Actor, added_by, ErrorCode.INVALID_FIELD)
        clean_text = sanitize_text(text)
        clean_project = sanitize_tag(project, "project")
        clean_context = sanitize_tag(context, "context")
        clean_due = validate_due_date(due_date)
        level = _coerce(AutonomyLevel, autonomy, ErrorCode.INVALID_AUTONOMY)
        rank = _coerce(Urgency, urgency, ErrorCode.INVALID_URGENCY)
        status = TaskStatus.PROPOSED if actor == Actor.AGENT else TaskStatus.TODO
        now = utc_now()

        async with self._stores.transaction():
            task_id = await self._new_task_id()

            blocker_id = None
            if blocked_by:
                blocker_id = await self._resolve_blocker(blocked_by)
                await self._check_cycle(task_id, blocker_id)

            if actor == Actor.AGENT:
                await self._rate_limiter.check_and_record(
                    int(now.timestamp() * 1000)
                )

            await self._stores.task_store.create_task(
                Task(
                    task_id=task_id,
                    text=clean_text,
                    status=status,
                    autonomy=level,
                    urgency=rank,
                    project=clean_project,
                    context=clean_context,
                    due_date=clean_due,
                    blocked_by=blocker_id,
                    added_by=actor,
                    created_at=now,
                )
            )
            await self._add_history(
                task_id,
                HistoryAction.CREATED,
                actor,
                notes="Agent proposed task" if status == TaskStatus.PROPOSED else None,
            )

        self._audit.record(
            "create",
            actor,
            task_id,
            {"text": clean_text, "status": status, "autonomy": level},
        )
        log.info("task_created", task_id=task_id, status=status, added_by=actor)
        return task_id

    async def update_task(
        self,
        id_or_prefix: str,
        updates: dict[str, Any],
        actor: Actor | str,
    ) -> Task:
        """编辑白名单内的字段

        Raises:
            PermissionDeniedError: 试图修改 autonomy
            InvalidInputError: 未知字段或值校验失败
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)

        async with self._stores.transaction():
            existing = await self._require_task(id_or_prefix)

            if "autonomy" in updates:
                raise PermissionDeniedError(
                    ErrorCode.PERMISSION_DENIED,
                    "Autonomy level cannot be changed after task creation. "
                    "This prevents agents from escalating their own permissions.",
                    {
                        "taskId": existing.task_id,
                        "currentAutonomy": existing.autonomy.value,
                    },
                )
            unknown = sorted(key for key in updates if key not in EDITABLE_FIELDS)
            if unknown:
                raise InvalidInputError(
                    ErrorCode.INVALID_FIELD,
                    f"Field(s) cannot be edited: {', '.join(unknown)}",
                    {"fields": unknown, "allowed": sorted(EDITABLE_FIELDS)},
                )

            columns = {
                EDITABLE_FIELDS[key]: self._clean_edit_value(EDITABLE_FIELDS[key], value)
                for key, value in updates.items()
            }
            if not columns:
                return existing

            await self._stores.task_store.update_columns(existing.task_id, columns)
            updated = await self._stores.task_store.get_task(existing.task_id)
            old = existing.model_dump(mode="json", include=set(columns))
            new = updated.model_dump(mode="json", include=set(columns))
            await self._add_history(
                existing.task_id,
                HistoryAction.UPDATED,
                actor,
                old_value=json.dumps(old, ensure_ascii=False),
                new_value=json.dumps(new, ensure_ascii=False),
            )

        self._audit.record("update", actor, existing.task_id, {"updates": new})
        return updated

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def start_task(self, id_or_prefix: str, actor: Actor | str) -> None:
        """todo -> in_progress"""
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)

        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            if task.status == TaskStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    ErrorCode.TASK_ALREADY_IN_PROGRESS,
                    f"Task already in progress: {task.task_id}",
                    {"id": task.task_id, "status": task.status.value},
                )
            if task.status != TaskStatus.TODO:
                raise self._transition_error(
                    task,
                    TaskStatus.IN_PROGRESS,
                    "Task must be in todo status to start",
                )
            await self._ensure_unblocked(task)

            started = await self._stores.task_store.transition_status(
                task.task_id,
                TaskStatus.IN_PROGRESS,
                {TaskStatus.TODO},
                {"started_at": utc_now()},
                require_unblocked=True,
            )
            if not started:
                raise self._transition_error(task, TaskStatus.IN_PROGRESS)
            await self._add_history(task.task_id, HistoryAction.STARTED, actor)

        self._audit.record("start", actor, task.task_id)
        log.info("task_started", task_id=task.task_id, actor=actor)

    async def complete_task(
        self,
        id_or_prefix: str,
        actor: Actor | str,
        *,
        session_id: str | None = None,
        session_log_path: str | None = None,
        tools_used: list[str] | None = None,
        tokens_used: int | None = None,
        duration_sec: int | None = None,
    ) -> list[str]:
        """完成任务，并在同一事务内解除所有被它阻塞的任务

        Returns:
            被解除阻塞的任务 ID 列表
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        columns: dict[str, Any] = {}
        for name, value in (("tokens_used", tokens_used), ("duration_sec", duration_sec)):
            if value is None:
                continue
            if value < 0:
                raise InvalidInputError(
                    ErrorCode.INVALID_FIELD,
                    f"{name} must be non-negative",
                    {name: value},
                )
            columns[name] = value
        session = sanitize(session_id, LIMITS["session_id"]) or None
        log_path = sanitize(session_log_path, LIMITS["session_log_path"]) or None
        tools = (
            [sanitize(tool, LIMITS["action"]) for tool in tools_used]
            if tools_used is not None
            else None
        )

        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            if task.status == TaskStatus.PROPOSED:
                raise InvalidTransitionError(
                    ErrorCode.TASK_NOT_CONFIRMED,
                    "Task is proposed and must be confirmed first.\n"
                    f"  Run: confirm {task.task_id}",
                    {"id": task.task_id, "status": task.status.value},
                )
            if task.status == TaskStatus.DONE:
                raise InvalidTransitionError(
                    ErrorCode.TASK_ALREADY_DONE,
                    f"Task already completed: {task.task_id}",
                    {"id": task.task_id},
                )
            if not validate_transition(task.status, TaskStatus.DONE):
                raise self._transition_error(task, TaskStatus.DONE)
            await self._ensure_unblocked(task)

            columns["completed_at"] = utc_now()
            completed = await self._stores.task_store.transition_status(
                task.task_id,
                TaskStatus.DONE,
                _WORKABLE,
                columns,
                require_unblocked=True,
            )
            if not completed:
                raise self._transition_error(task, TaskStatus.DONE)
            await self._add_history(
                task.task_id,
                HistoryAction.COMPLETED,
                actor,
                session_id=session,
                session_log_path=log_path,
                tools_used=tools,
            )
            unblocked = await self._cascade_unblock(task.task_id, actor)

        self._audit.record(
            "complete",
            actor,
            task.task_id,
            {"sessionId": session, "toolsUsed": tools, "unblocked": unblocked},
        )
        log.info(
            "task_completed",
            task_id=task.task_id,
            actor=actor,
            unblocked_count=len(unblocked),
        )
        return unblocked

    async def fail_task(
        self,
        id_or_prefix: str,
        reason: str | None = None,
        actor: Actor | str = Actor.AGENT,
    ) -> Task:
        """记录一次失败：attempts+1，状态回到 todo

        达到 max_attempts 时 autonomy 强制降级为 collab（该字段唯一的修改路径），
        并追加一条带日期的降级备注。
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        clean_reason = sanitize(reason, LIMITS["value_field"]) or None
        max_attempts = self._settings.max_attempts

        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            if task.status not in _WORKABLE:
                raise self._transition_error(
                    task, TaskStatus.TODO, "Only todo or in_progress tasks can fail"
                )

            now = utc_now()
            attempts = task.attempts + 1
            columns: dict[str, Any] = {"attempts": attempts, "last_attempt_at": now}
            demoted = attempts >= max_attempts and task.autonomy != AutonomyLevel.COLLAB
            if attempts >= max_attempts:
                columns["autonomy"] = AutonomyLevel.COLLAB
            if attempts == max_attempts:
                notes = _append_dated_note(
                    task.notes,
                    f"Auto-demoted to collab after {attempts} failed attempts",
                    now.date().isoformat(),
                )
                columns["notes"] = notes[-LIMITS["notes"] :]

            failed = await self._stores.task_store.transition_status(
                task.task_id, TaskStatus.TODO, _WORKABLE, columns
            )
            if not failed:
                raise self._transition_error(task, TaskStatus.TODO)
            await self._add_history(
                task.task_id, HistoryAction.FAILED, actor, notes=clean_reason
            )
            updated = await self._stores.task_store.get_task(task.task_id)

        self._audit.record(
            "fail",
            actor,
            task.task_id,
            {"reason": clean_reason, "attempts": attempts},
        )
        if demoted:
            log.warning(
                "task_autonomy_demoted",
                task_id=task.task_id,
                attempts=attempts,
                previous_autonomy=task.autonomy,
            )
        return updated

    async def can_retry(self, id_or_prefix: str, actor: Actor | str = Actor.AGENT) -> bool:
        """检查重试资格并原子地占位（成功时任务进入 in_progress）

        条件：todo、attempts < max_attempts、上次失败早于冷却期、未被阻塞。
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        now = utc_now()
        cutoff = to_iso(now - timedelta(seconds=self._settings.retry_cooldown_s))

        async with self._stores.transaction():
            task_id = await self._resolve(id_or_prefix)
            if task_id is None:
                return False
            reserved = await self._stores.task_store.reserve_retry(
                task_id,
                self._settings.max_attempts,
                cutoff,
                to_iso(now),
            )
            if reserved:
                await self._add_history(task_id, HistoryAction.RETRY_RESERVED, actor)

        if reserved:
            self._audit.record("retry", actor, task_id)
        return reserved

    async def confirm_task(self, id_or_prefix: str, actor: Actor | str) -> None:
        """proposed -> todo"""
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            await self._transition_from_proposed(task, TaskStatus.TODO)
            await self._add_history(task.task_id, HistoryAction.CONFIRMED, actor)
        self._audit.record("confirm", actor, task.task_id)

    async def reject_task(
        self,
        id_or_prefix: str,
        actor: Actor | str,
        reason: str | None = None,
    ) -> None:
        """proposed -> archived，可附带原因"""
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        clean_reason = sanitize(reason, LIMITS["value_field"]) or None
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            await self._transition_from_proposed(task, TaskStatus.ARCHIVED)
            await self._add_history(
                task.task_id, HistoryAction.REJECTED, actor, notes=clean_reason
            )
        self._audit.record("reject", actor, task.task_id, {"reason": clean_reason})

    async def archive_task(self, id_or_prefix: str, actor: Actor | str) -> None:
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            if task.status == TaskStatus.ARCHIVED:
                raise InvalidTransitionError(
                    ErrorCode.TASK_ALREADY_ARCHIVED,
                    f"Task already archived: {task.task_id}",
                    {"id": task.task_id},
                )
            if task.status not in _ARCHIVABLE:
                raise self._transition_error(task, TaskStatus.ARCHIVED)
            archived = await self._stores.task_store.transition_status(
                task.task_id, TaskStatus.ARCHIVED, _ARCHIVABLE
            )
            if not archived:
                raise self._transition_error(task, TaskStatus.ARCHIVED)
            await self._add_history(task.task_id, HistoryAction.ARCHIVED, actor)
        self._audit.record("archive", actor, task.task_id)

    async def unarchive_task(self, id_or_prefix: str, actor: Actor | str) -> None:
        """archived -> todo"""
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            restored = await self._stores.task_store.transition_status(
                task.task_id, TaskStatus.TODO, {TaskStatus.ARCHIVED}
            )
            if not restored:
                raise self._transition_error(
                    task, TaskStatus.TODO, "Only archived tasks can be unarchived"
                )
            await self._add_history(task.task_id, HistoryAction.UNARCHIVED, actor)
        self._audit.record("unarchive", actor, task.task_id)

    # ------------------------------------------------------------------
    # 阻塞关系
    # ------------------------------------------------------------------

    async def block_task(
        self,
        id_or_prefix: str,
        blocker: str,
        actor: Actor | str,
    ) -> None:
        """令任务被 blocker 阻塞

        Raises:
            TaskBlockedError: blocker 不存在（BLOCKER_NOT_FOUND）、已终结
                （BLOCKER_ALREADY_DONE）或会形成环（CIRCULAR_DEPENDENCY）
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            blocker_id = await self._resolve_blocker(blocker)
            blocker_task = await self._stores.task_store.get_task(blocker_id)
            if blocker_task.status in TERMINAL_STATES:
                raise TaskBlockedError(
                    ErrorCode.BLOCKER_ALREADY_DONE,
                    "Cannot block by a completed or archived task",
                    {"blockerId": blocker_id, "status": blocker_task.status.value},
                )
            await self._check_cycle(task.task_id, blocker_id)

            await self._stores.task_store.update_columns(
                task.task_id, {"blocked_by": blocker_id}
            )
            await self._add_history(
                task.task_id,
                HistoryAction.BLOCKED,
                actor,
                notes=f"Blocked by {blocker_id}",
            )
        self._audit.record("block", actor, task.task_id, {"blockerId": blocker_id})

    async def unblock_task(self, id_or_prefix: str, actor: Actor | str) -> None:
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            await self._stores.task_store.update_columns(
                task.task_id, {"blocked_by": None}
            )
            await self._add_history(task.task_id, HistoryAction.UNBLOCKED, actor)
        self._audit.record("unblock", actor, task.task_id)

    async def add_note(self, id_or_prefix: str, note: str, actor: Actor | str) -> str:
        """追加带日期的备注；合并后超长则整体拒绝

        Returns:
            合并后的完整备注
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        clean = sanitize_notes(note)
        if not clean.strip():
            raise InvalidInputError(ErrorCode.EMPTY_TEXT, "Note cannot be empty")

        async with self._stores.transaction():
            task = await self._require_task(id_or_prefix)
            combined = _append_dated_note(
                task.notes, clean, utc_now().date().isoformat()
            )
            limit = LIMITS["notes"]
            if len(combined) > limit:
                raise InvalidInputError(
                    ErrorCode.TEXT_TOO_LONG,
                    f"Combined notes too long: {len(combined)} chars (max {limit})",
                    {"length": len(combined), "max": limit},
                )
            await self._stores.task_store.update_columns(
                task.task_id, {"notes": combined}
            )
            await self._add_history(
                task.task_id, HistoryAction.NOTE_ADDED, actor, notes=clean
            )
        self._audit.record("note", actor, task.task_id, {"note": clean})
        return combined

    # ------------------------------------------------------------------
    # 批量操作
    # ------------------------------------------------------------------

    async def bulk_complete(self, filters: TaskFilter, actor: Actor | str) -> int:
        """完成所有匹配且当前可完成的任务；不可完成的静默跳过

        匹配集合在事务内反复扫描，直到一轮没有新的完成为止；
        被同批 blocker 解除阻塞的任务无论排序先后都会完成。
        """
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        count = 0
        async with self._stores.transaction():
            task_store = self._stores.task_store
            pending = [t.task_id for t in await task_store.list_tasks(filters)]
            progressed = True
            while progressed:
                progressed = False
                for task_id in list(pending):
                    task = await task_store.get_task(task_id)
                    if task.status not in _WORKABLE:
                        pending.remove(task_id)
                        continue
                    if await self._unresolved_blocker(task):
                        continue
                    done = await task_store.transition_status(
                        task_id,
                        TaskStatus.DONE,
                        _WORKABLE,
                        {"completed_at": utc_now()},
                        require_unblocked=True,
                    )
                    if not done:
                        continue
                    pending.remove(task_id)
                    await self._add_history(task_id, HistoryAction.BULK_COMPLETED, actor)
                    await self._cascade_unblock(task_id, actor)
                    count += 1
                    progressed = True

        if count:
            self._audit.record(
                "bulk_complete",
                actor,
                "multiple",
                {"count": count, "filters": filters.model_dump(mode="json", exclude_defaults=True)},
            )
        return count

    async def bulk_archive(self, filters: TaskFilter, actor: Actor | str) -> int:
        """归档所有匹配且当前可归档的任务（proposed/todo/in_progress）"""
        actor = _coerce(Actor, actor, ErrorCode.INVALID_FIELD)
        count = 0
        async with self._stores.transaction():
            task_store = self._stores.task_store
            for task in await task_store.list_tasks(filters):
                if task.status not in _ARCHIVABLE:
                    continue
                archived = await task_store.transition_status(
                    task.task_id, TaskStatus.ARCHIVED, _ARCHIVABLE
                )
                if not archived:
                    continue
                await self._add_history(task.task_id, HistoryAction.BULK_ARCHIVED, actor)
                count += 1

        if count:
            self._audit.record(
                "bulk_archive",
                actor,
                "multiple",
                {"count": count, "filters": filters.model_dump(mode="json", exclude_defaults=True)},
            )
        return count

    # ------------------------------------------------------------------
    # Config / 咨询锁
    # ------------------------------------------------------------------

    async def get_config(self, key: str) -> str | None:
        async with self._stores.write_lock:
            return await self._stores.config_store.get(key)

    async def set_config(self, key: str, value: str | None) -> None:
        async with self._stores.transaction():
            await self._stores.config_store.set(key, value)

    async def is_auto_execution_enabled(self) -> bool:
        return (await self.get_config(CONFIG_AUTO_EXECUTION)) == "true"

    async def acquire_lock(
        self,
        slot: str = DEFAULT_LOCK_SLOT,
        holder: str | None = None,
    ) -> bool:
        """尝试获取咨询锁；槽位为空时写入持有者标识（默认为当前时间）"""
        async with self._stores.transaction():
            acquired = await self._stores.config_store.try_acquire(
                slot, holder or to_iso(utc_now())
            )
        log.debug("advisory_lock_acquire", slot=slot, acquired=acquired)
        return acquired

    async def release_lock(self, slot: str = DEFAULT_LOCK_SLOT) -> None:
        async with self._stores.transaction():
            await self._stores.config_store.release(slot)

    # ------------------------------------------------------------------
    # 内部辅助（均需在持有 write_lock 时调用）
    # ------------------------------------------------------------------

    async def _resolve(self, id_or_prefix: str) -> str | None:
        if not is_id_prefix(id_or_prefix):
            return None
        task_store = self._stores.task_store
        if validate_task_id(id_or_prefix):
            return id_or_prefix if await task_store.task_exists(id_or_prefix) else None
        matches = await task_store.find_by_prefix(id_or_prefix)
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousIdError(id_or_prefix, [t.task_id for t in matches])
        return matches[0].task_id

    async def _require_task(self, id_or_prefix: str) -> Task:
        task_id = await self._resolve(id_or_prefix)
        task = await self._stores.task_store.get_task(task_id) if task_id else None
        if task is None:
            raise TaskNotFoundError(id_or_prefix)
        return task

    async def _resolve_blocker(self, blocker: str) -> str:
        blocker_id = await self._resolve(blocker)
        if blocker_id is None:
            raise TaskBlockedError(
                ErrorCode.BLOCKER_NOT_FOUND,
                f"Blocker task not found: {blocker}",
                {"blockerId": blocker},
            )
        return blocker_id

    async def _check_cycle(self, task_id: str, blocker_id: str) -> None:
        if await would_create_cycle(
            self._stores.task_store,
            task_id,
            blocker_id,
            self._settings.max_blocker_depth,
        ):
            raise TaskBlockedError(
                ErrorCode.CIRCULAR_DEPENDENCY,
                "Cannot block: would create circular dependency",
                {"taskId": task_id, "blockerId": blocker_id},
            )

    async def _unresolved_blocker(self, task: Task) -> str | None:
        """task 的 blocker 仍未 done/archived 时返回其 ID"""
        if not task.blocked_by:
            return None
        blocker = await self._stores.task_store.get_task(task.blocked_by)
        if blocker is None or blocker.status in TERMINAL_STATES:
            return None
        return blocker.task_id

    async def _ensure_unblocked(self, task: Task) -> None:
        blocker_id = await self._unresolved_blocker(task)
        if blocker_id:
            raise TaskBlockedError(
                ErrorCode.TASK_BLOCKED,
                f"Task is blocked by {blocker_id}. Complete blocker first.",
                {"id": task.task_id, "blockerId": blocker_id},
            )

    async def _cascade_unblock(self, task_id: str, actor: Actor) -> list[str]:
        dependents = await self._stores.task_store.unblock_dependents(task_id)
        for dependent in dependents:
            await self._add_history(
                dependent,
                HistoryAction.UNBLOCKED,
                actor,
                notes=f"Blocker {task_id} completed",
            )
        return dependents

    async def _transition_from_proposed(self, task: Task, to_status: TaskStatus) -> None:
        moved = await self._stores.task_store.transition_status(
            task.task_id, to_status, {TaskStatus.PROPOSED}
        )
        if not moved:
            raise self._transition_error(
                task, to_status, f"Task is not in proposed status: {task.task_id}"
            )

    async def _new_task_id(self) -> str:
        task_id = generate_task_id()
        while await self._stores.task_store.task_exists(task_id):
            task_id = generate_task_id()
        return task_id

    async def _add_history(
        self,
        task_id: str,
        action: HistoryAction,
        actor: Actor,
        **fields: Any,
    ) -> None:
        await self._stores.history_store.append(
            HistoryEntry(
                entry_id=str(ULID()),
                task_id=task_id,
                action=action.value,
                actor=actor,
                timestamp=utc_now(),
                **fields,
            )
        )

    @staticmethod
    def _clean_edit_value(column: str, value: Any) -> Any:
        if column == "text":
            return sanitize_text(value)
        if column == "notes":
            return sanitize_notes(value) or None
        if column in ("project", "context"):
            return sanitize_tag(value, column)
        if column == "due_date":
            return validate_due_date(value)
        return _coerce(Urgency, value, ErrorCode.INVALID_URGENCY)

    @staticmethod
    def _transition_error(
        task: Task,
        to_status: TaskStatus,
        message: str | None = None,
    ) -> InvalidTransitionError:
        return InvalidTransitionError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            message or f"Cannot transition from {task.status} to {to_status}",
            {"id": task.task_id, "status": task.status.value, "target": to_status.value},
        )
