"""枚举定义 -- 任务状态机、自治等级、紧急度、操作者

包含 TaskStatus 状态机、AutonomyLevel、Urgency、Actor、HistoryAction 枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PROPOSED = "proposed"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"


class AutonomyLevel(StrEnum):
    """自治等级 -- 创建后不可编辑，只能因连续失败单向降级为 COLLAB"""

    AUTO = "auto"
    AUTO_NOTIFY = "auto-notify"
    COLLAB = "collab"


class Urgency(StrEnum):
    """紧急度（调度元数据，可自由修改）"""

    NOW = "now"
    SOON = "soon"
    WHENEVER = "whenever"
    SOMEDAY = "someday"


class Actor(StrEnum):
    """操作者类型"""

    HUMAN = "human"
    AGENT = "agent"


class HistoryAction(StrEnum):
    """history 表中的 action 取值"""

    CREATED = "created"
    UPDATED = "updated"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    ARCHIVED = "archived"
    UNARCHIVED = "unarchived"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    NOTE_ADDED = "note_added"
    RETRY_RESERVED = "retry_reserved"
    BULK_COMPLETED = "bulk_completed"
    BULK_ARCHIVED = "bulk_archived"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PROPOSED: {TaskStatus.TODO, TaskStatus.ARCHIVED},
    TaskStatus.TODO: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.DONE,
        TaskStatus.TODO,  # fail -> 重试
        TaskStatus.ARCHIVED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.DONE,
        TaskStatus.TODO,
        TaskStatus.ARCHIVED,
    },
    TaskStatus.DONE: set(),
    # 仅允许 unarchive
    TaskStatus.ARCHIVED: {TaskStatus.TODO},
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.DONE,
    TaskStatus.ARCHIVED,
}

# 收件箱只看这三种非终态
ACTIVE_STATES: tuple[TaskStatus, ...] = (
    TaskStatus.TODO,
    TaskStatus.IN_PROGRESS,
    TaskStatus.PROPOSED,
)

URGENCY_RANK: dict[Urgency, int] = {
    Urgency.NOW: 0,
    Urgency.SOON: 1,
    Urgency.WHENEVER: 2,
    Urgency.SOMEDAY: 3,
}


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
