"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from tandem.core.task_service import TaskService

_ENV = {
    "TANDEM_DB_PATH": "sqlite/integration.db",
    "TANDEM_AUDIT_PATH": "audit.jsonl",
}


@pytest_asyncio.fixture
async def integration_env(tmp_path: Path) -> AsyncGenerator[Path, None]:
    """把数据库与审计文件指向临时目录，并关闭提案冷却"""
    for name, relative in _ENV.items():
        os.environ[name] = str(tmp_path / relative)
    os.environ["TANDEM_PROPOSAL_COOLDOWN_S"] = "0"

    yield tmp_path

    for name in (*_ENV, "TANDEM_PROPOSAL_COOLDOWN_S"):
        os.environ.pop(name, None)


@pytest_asyncio.fixture
async def queue(integration_env: Path) -> AsyncGenerator[TaskService, None]:
    """按环境变量打开的 TaskService"""
    service = await TaskService.open()
    yield service
    await service.close()
