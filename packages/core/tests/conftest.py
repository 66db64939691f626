"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest_asyncio
from tandem.core.audit import AuditLog
from tandem.core.config import QueueSettings
from tandem.core.store import StoreGroup, create_store_group
from tandem.core.task_service import TaskService


@pytest_asyncio.fixture
async def core_db(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """核心层已初始化数据库连接"""
    from tandem.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "core_test.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的 StoreGroup"""
    stores = await create_store_group(str(tmp_db_path))
    yield stores
    await stores.close()


@pytest_asyncio.fixture
async def settings() -> QueueSettings:
    """测试用参数：关闭提案冷却，其余为默认值"""
    return QueueSettings(proposal_cooldown_s=0)


@pytest_asyncio.fixture
async def service(
    store_group: StoreGroup,
    tmp_audit_path: Path,
    settings: QueueSettings,
) -> AsyncGenerator[TaskService, None]:
    """TaskService 实例（关闭时落盘审计）"""
    audit = AuditLog(
        store_group,
        tmp_audit_path,
        batch_size=settings.audit_batch_size,
        flush_ms=settings.audit_flush_ms,
    )
    svc = TaskService(store_group, audit, settings)
    yield svc
    await audit.aclose()
