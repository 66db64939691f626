"""任务队列异常体系

调用方应匹配 code（稳定），不要匹配 message 文本。
每个异常携带 context 字典，供程序化处理（例如限流后的退避时间）。
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """稳定错误码"""

    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_NOT_CONFIRMED = "TASK_NOT_CONFIRMED"
    TASK_BLOCKED = "TASK_BLOCKED"
    TASK_ALREADY_DONE = "TASK_ALREADY_DONE"
    TASK_ALREADY_ARCHIVED = "TASK_ALREADY_ARCHIVED"
    TASK_ALREADY_IN_PROGRESS = "TASK_ALREADY_IN_PROGRESS"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    BLOCKER_NOT_FOUND = "BLOCKER_NOT_FOUND"
    BLOCKER_ALREADY_DONE = "BLOCKER_ALREADY_DONE"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INVALID_PROJECT_FORMAT = "INVALID_PROJECT_FORMAT"
    INVALID_DATE = "INVALID_DATE"
    INVALID_FIELD = "INVALID_FIELD"
    EMPTY_TEXT = "EMPTY_TEXT"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"
    AMBIGUOUS_ID = "AMBIGUOUS_ID"
    INVALID_URGENCY = "INVALID_URGENCY"
    INVALID_AUTONOMY = "INVALID_AUTONOMY"
    INVALID_STATUS = "INVALID_STATUS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class TaskQueueError(Exception):
    """任务队列基础异常"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Args:
            code: 稳定错误码
            message: 错误描述（面向人）
            context: 结构化上下文
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """JSON 输出形式"""
        return {
            "error": True,
            "code": self.code.value,
            "message": self.message,
            "context": self.context,
        }


class TaskNotFoundError(TaskQueueError):
    def __init__(self, task_id: str) -> None:
        super().__init__(
            ErrorCode.TASK_NOT_FOUND,
            f"Task not found: {task_id}",
            {"id": task_id},
        )


class InvalidTransitionError(TaskQueueError):
    """状态流转非法（含 already-in-progress/already-done/not-confirmed/already-archived）"""


class PermissionDeniedError(TaskQueueError):
    """试图修改 autonomy 等受保护字段"""


class TaskBlockedError(TaskQueueError):
    """任务被阻塞，或阻塞关系本身非法（blocker 不存在、循环依赖）"""


class RateLimitExceededError(TaskQueueError):
    """agent 提案超过数量上限或冷却时间"""

    def __init__(self, message: str, context: dict[str, Any]) -> None:
        super().__init__(ErrorCode.RATE_LIMIT_EXCEEDED, message, context)


class InvalidInputError(TaskQueueError):
    """输入校验失败（文本过长/为空、标签格式、日期格式、未知字段）"""


class AmbiguousIdError(TaskQueueError):
    """ID 前缀匹配到多个任务"""

    def __init__(self, prefix: str, matches: list[str]) -> None:
        super().__init__(
            ErrorCode.AMBIGUOUS_ID,
            f"Multiple tasks match '{prefix}'",
            {"prefix": prefix, "matches": matches},
        )
