"""Task Domain Model

tasks 表中的一行。text/notes/project/context 始终是清洗后的形式。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .enums import Actor, AutonomyLevel, TaskStatus, Urgency


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="8 位小写字母数字 ID")
    text: str = Field(description="任务描述（已清洗）")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    autonomy: AutonomyLevel = Field(
        default=AutonomyLevel.COLLAB,
        description="自治等级，创建后只能单向降级",
    )
    urgency: Urgency = Field(default=Urgency.WHENEVER, description="紧急度")
    project: str | None = Field(default=None, description="+project 标签")
    context: str | None = Field(default=None, description="@context 标签")
    due_date: date | None = Field(default=None, description="截止日期")
    blocked_by: str | None = Field(default=None, description="阻塞本任务的任务 ID")
    added_by: Actor = Field(default=Actor.HUMAN, description="创建者")
    created_at: datetime = Field(description="创建时间")
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    notes: str | None = Field(default=None, description="追加式备注")
    attempts: int = Field(default=0, description="失败次数")
    last_attempt_at: datetime | None = Field(default=None)
    tokens_used: int = Field(default=0)
    duration_sec: int = Field(default=0)


class TaskFilter(BaseModel):
    """list_tasks 的筛选条件，全部可选，条件之间为 AND"""

    status: TaskStatus | list[TaskStatus] | None = None
    autonomy: AutonomyLevel | None = None
    urgency: Urgency | None = None
    project: str | None = None
    added_by: Actor | None = None
    blocked: bool | None = Field(
        default=None,
        description="True 仅返回 blocked_by 非空；False 仅返回 blocked_by 为空",
    )
    ready: bool = Field(
        default=False,
        description="仅返回 todo/in_progress 且未被阻塞的任务",
    )
