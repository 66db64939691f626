"""structlog 配置模块

console 模式：带颜色的可读输出（默认）
json 模式：每行一个 JSON 对象，供日志采集
日志统一写到 stderr，stdout 只留给 CLI 的 inbox/stats 输出。
"""

import logging
import os
import sys
from typing import Any, TextIO

import structlog

# 任务正文与备注来自不可信输入，不进入日志
REDACTED_KEYS = frozenset({"text", "notes", "note"})


def redact_task_content(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog 处理器：把任务正文类字段替换为长度"""
    for key in REDACTED_KEYS & event_dict.keys():
        value = event_dict[key]
        event_dict[key] = f"<{len(value)} chars>" if isinstance(value, str) else "<redacted>"
    return event_dict


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """初始化 structlog + 标准库 logging

    Args:
        log_format: "json" 或 "console"；缺省读 TANDEM_LOG_FORMAT
        log_level: 根 logger 级别；缺省读 TANDEM_LOG_LEVEL（默认 INFO）
        stream: 输出流，默认 sys.stderr
    """
    log_format = log_format or os.environ.get("TANDEM_LOG_FORMAT", "console")
    log_level = log_level or os.environ.get("TANDEM_LOG_LEVEL", "INFO")

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_task_content,
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=(stream or sys.stderr).isatty()
        )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # aiosqlite 在 DEBUG 级别逐条记录 SQL 调用
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
