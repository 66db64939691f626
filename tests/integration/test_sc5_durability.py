"""SC-5 持久性集成测试

进程重启后任务、历史、config 与审计日志完整。
"""

import json
from pathlib import Path

from tandem.core.models import Actor, TaskStatus
from tandem.core.task_service import TaskService


class TestSC5Durability:
    """SC-5: 重启后数据完整"""

    async def test_state_survives_restart(self, integration_env: Path):
        """写入 -> 关闭 -> 重新打开 -> 数据完整"""
        first = await TaskService.open()
        task_id = await first.create_task("Durable task", Actor.HUMAN)
        await first.start_task(task_id, Actor.AGENT)
        await first.set_config("auto_execution_enabled", "false")
        assert await first.acquire_lock(holder="before-restart") is True
        await first.close()

        second = await TaskService.open()
        try:
            task = await second.get_task(task_id)
            assert task.status == TaskStatus.IN_PROGRESS
            assert [e.action for e in await second.get_history(task_id)] == [
                "created",
                "started",
            ]
            assert await second.is_auto_execution_enabled() is False
            # 锁没有随进程退出而释放
            assert await second.acquire_lock() is False
        finally:
            await second.close()

        audit_lines = [
            json.loads(line)
            for line in (integration_env / "audit.jsonl").read_text().splitlines()
        ]
        assert [line["action"] for line in audit_lines] == ["create", "start"]
