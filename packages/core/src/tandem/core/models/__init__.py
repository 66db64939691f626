"""Tandem Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    URGENCY_RANK,
    VALID_TRANSITIONS,
    Actor,
    AutonomyLevel,
    HistoryAction,
    TaskStatus,
    Urgency,
    validate_transition,
)
from .history import AuditRecord, FailedAudit, HistoryEntry
from .inbox import InboxMeta, InboxResult
from .task import Task, TaskFilter

__all__ = [
    # 枚举
    "TaskStatus",
    "AutonomyLevel",
    "Urgency",
    "Actor",
    "HistoryAction",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTIVE_STATES",
    "URGENCY_RANK",
    "validate_transition",
    # Task
    "Task",
    "TaskFilter",
    # History / Audit
    "HistoryEntry",
    "AuditRecord",
    "FailedAudit",
    # Inbox
    "InboxMeta",
    "InboxResult",
]
