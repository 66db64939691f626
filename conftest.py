"""全局 pytest 配置 -- 临时 SQLite 数据库与审计文件 fixture"""

from pathlib import Path

import pytest_asyncio


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def tmp_audit_path(tmp_path: Path) -> Path:
    """提供临时审计日志路径"""
    return tmp_path / "audit.jsonl"
