"""时间工具

数据库中的时间戳统一为带微秒的 UTC ISO 8601 字符串，
字典序即时间序，可以直接在 SQL 中用参数比较。
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    """naive 时间视为 UTC"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso(dt: datetime) -> str:
    """固定精度的 ISO 字符串（microsecond 为 0 时也保留小数位）"""
    return as_utc(dt).isoformat(timespec="microseconds")
