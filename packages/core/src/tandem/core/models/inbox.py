"""收件箱结构 -- 面向 agent 的七路分区"""

from pydantic import BaseModel, Field

from .task import Task


class InboxMeta(BaseModel):
    auto_execution_enabled: bool
    tasks_completed_4h: int


class InboxResult(BaseModel):
    """一个任务可同时出现在多个分区中"""

    meta: InboxMeta
    auto_ready: list[Task] = Field(default_factory=list)
    auto_notify_ready: list[Task] = Field(default_factory=list)
    urgent: list[Task] = Field(default_factory=list)
    overdue: list[Task] = Field(default_factory=list)
    proposed: list[Task] = Field(default_factory=list)
    stale: list[Task] = Field(default_factory=list)
    blocked: list[Task] = Field(default_factory=list)
