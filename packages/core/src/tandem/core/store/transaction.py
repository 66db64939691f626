"""写事务封装

同一连接上的所有写操作串行化在 write_lock 之后，并以 BEGIN IMMEDIATE 开启，
读校验与写入处于同一事务：成功提交，任何异常回滚。
存储层的约束错误在此翻译为结构化的 TaskQueueError，不泄露 SQLite 原始文本。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from ..exceptions import (
    ErrorCode,
    InvalidInputError,
    TaskBlockedError,
)

# (消息片段, 错误码, 描述)；按顺序匹配，context 需排在 text 之前
_CHECK_TRANSLATIONS: list[tuple[str, ErrorCode, str]] = [
    (
        "urgency IN",
        ErrorCode.INVALID_URGENCY,
        "Invalid urgency. Must be one of: now, soon, whenever, someday",
    ),
    (
        "autonomy IN",
        ErrorCode.INVALID_AUTONOMY,
        "Invalid autonomy level. Must be one of: auto, auto-notify, collab",
    ),
    (
        "status IN",
        ErrorCode.INVALID_STATUS,
        "Invalid status. Must be one of: proposed, todo, in_progress, done, archived",
    ),
    (
        "project",
        ErrorCode.INVALID_PROJECT_FORMAT,
        "Project must start with + and be at most 50 characters",
    ),
    (
        "context",
        ErrorCode.INVALID_PROJECT_FORMAT,
        "Context must start with @ and be at most 50 characters",
    ),
    ("length(notes)", ErrorCode.TEXT_TOO_LONG, "Notes too long"),
    ("length(trim(text))", ErrorCode.EMPTY_TEXT, "Task text cannot be empty"),
    ("length(text)", ErrorCode.TEXT_TOO_LONG, "Task text too long"),
]


def translate_integrity_error(error: aiosqlite.IntegrityError) -> Exception:
    """把 SQLite 约束错误翻译为 TaskQueueError；无法识别时原样返回"""
    message = str(error)

    if "CHECK constraint failed" in message:
        for fragment, code, description in _CHECK_TRANSLATIONS:
            if fragment in message:
                return InvalidInputError(code, description)

    if "FOREIGN KEY constraint failed" in message:
        return TaskBlockedError(
            ErrorCode.BLOCKER_NOT_FOUND,
            "Referenced task does not exist",
        )

    return error


@asynccontextmanager
async def atomic(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
) -> AsyncIterator[aiosqlite.Connection]:
    """在 write_lock 保护下执行一个写事务

    不可重入：持有期间不能再次进入 atomic()。

    Raises:
        TaskQueueError: 约束错误翻译后的结构化错误
    """
    async with write_lock:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            translated = translate_integrity_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        except BaseException:
            await conn.rollback()
            raise

