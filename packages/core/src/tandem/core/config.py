"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、审计日志路径、字段长度限制，以及限流/重试/审计批量等
可调参数（QueueSettings）。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TANDEM_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TANDEM_DB_PATH",
        str(_get_base_dir() / "sqlite" / "tandem.db"),
    )


def get_audit_path() -> str:
    """获取 append-only 审计日志文件路径（JSON Lines）"""
    return os.environ.get(
        "TANDEM_AUDIT_PATH",
        str(_get_base_dir() / "audit.jsonl"),
    )


# 字段长度上限（清洗之后、截断之前检查）
LIMITS: dict[str, int] = {
    "task_id": 8,
    "text": 1000,
    "notes": 5000,
    "project": 50,
    "context": 50,
    "session_id": 100,
    "session_log_path": 500,
    "action": 50,
    "value_field": 1000,
}

# Config 表中预置的键
CONFIG_SCHEMA_VERSION = "schema_version"
CONFIG_AUTO_EXECUTION = "auto_execution_enabled"
CONFIG_LAST_AGENT_PROPOSAL = "last_agent_proposal"
DEFAULT_LOCK_SLOT = "heartbeat_lock"


class QueueSettings(BaseModel):
    """任务队列运行参数 -- 从环境变量加载

    环境变量:
        TANDEM_MAX_PROPOSED: agent 同时处于 proposed 的最大数量
        TANDEM_PROPOSAL_COOLDOWN_S: 两次 agent 提案之间的最小间隔（秒）
        TANDEM_MAX_ATTEMPTS: 失败多少次后降级为 collab
        TANDEM_RETRY_COOLDOWN_S: 重试冷却时间（秒）
        TANDEM_STALE_AFTER_HOURS: in_progress 超过多少小时视为 stale
        TANDEM_AUDIT_BATCH_SIZE: 审计队列达到多少条立即落盘
        TANDEM_AUDIT_FLUSH_MS: 审计队列 debounce 延迟（毫秒）
        TANDEM_MAX_BLOCKER_DEPTH: 阻塞链最大遍历深度
    """

    max_proposed: int = Field(default=5, ge=1, description="proposed 上限")
    proposal_cooldown_s: float = Field(default=60, ge=0, description="提案冷却（秒）")
    max_attempts: int = Field(default=3, ge=1, description="降级前允许的失败次数")
    retry_cooldown_s: float = Field(default=3600, ge=0, description="重试冷却（秒）")
    stale_after_hours: float = Field(default=24, gt=0, description="stale 阈值（小时）")
    audit_batch_size: int = Field(default=50, ge=1, description="审计批量阈值")
    audit_flush_ms: int = Field(default=100, ge=0, description="审计 debounce（毫秒）")
    max_blocker_depth: int = Field(default=1000, ge=1, description="阻塞链遍历深度")


_SETTINGS_ENV: dict[str, tuple[str, type]] = {
    "max_proposed": ("TANDEM_MAX_PROPOSED", int),
    "proposal_cooldown_s": ("TANDEM_PROPOSAL_COOLDOWN_S", float),
    "max_attempts": ("TANDEM_MAX_ATTEMPTS", int),
    "retry_cooldown_s": ("TANDEM_RETRY_COOLDOWN_S", float),
    "stale_after_hours": ("TANDEM_STALE_AFTER_HOURS", float),
    "audit_batch_size": ("TANDEM_AUDIT_BATCH_SIZE", int),
    "audit_flush_ms": ("TANDEM_AUDIT_FLUSH_MS", int),
    "max_blocker_depth": ("TANDEM_MAX_BLOCKER_DEPTH", int),
}


def load_queue_settings() -> QueueSettings:
    """从环境变量加载 QueueSettings

    非法数值记录 warning 并使用默认值，不阻塞启动。
    """
    kwargs: dict = {}
    for field_name, (env_var, cast) in _SETTINGS_ENV.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            kwargs[field_name] = cast(val)
        except ValueError:
            log.warning(
                "invalid_settings_value",
                env_var=env_var,
                value=val,
                fallback=QueueSettings.model_fields[field_name].default,
            )

    return QueueSettings(**kwargs)
