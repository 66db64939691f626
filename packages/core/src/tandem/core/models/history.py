"""History / Audit Domain Model

history 表 append-only，不允许更新或删除。entry_id 使用 ULID 格式，时间有序。
AuditRecord 写入独立的审计日志文件，与事务存储解耦。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import Actor


class HistoryEntry(BaseModel):
    """History 数据模型 -- 每次状态流转一条"""

    entry_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    action: str = Field(description="动作名称，见 HistoryAction")
    actor: Actor = Field(description="操作者")
    timestamp: datetime = Field(description="发生时间")
    notes: str | None = Field(default=None)
    session_id: str | None = Field(default=None)
    session_log_path: str | None = Field(default=None)
    old_value: str | None = Field(default=None, description="变更前快照（JSON）")
    new_value: str | None = Field(default=None, description="变更后快照（JSON）")
    tools_used: list[str] | None = Field(default=None)


class AuditRecord(BaseModel):
    """审计日志条目（JSON Lines 一行）"""

    audit_id: str = Field(description="唯一标识，ULID 格式")
    timestamp: datetime
    action: str
    actor: Actor
    task_id: str = Field(description="任务 ID；批量操作为 'multiple'")
    details: dict[str, Any] = Field(default_factory=dict)


class FailedAudit(BaseModel):
    """审计文件写入失败后落入 _failed_audits 表的条目"""

    id: int
    timestamp: datetime
    action: str
    actor: str
    task_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
