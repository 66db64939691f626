"""SC-2 自治等级集成测试

autonomy 创建后不可编辑，只能因连续失败单向降级为 collab。
"""

import pytest
from tandem.core.exceptions import ErrorCode, PermissionDeniedError
from tandem.core.models import Actor, AutonomyLevel, TaskStatus
from tandem.core.task_service import TaskService


class TestSC2Autonomy:
    """SC-2: 降级与编辑保护"""

    async def test_three_failures_demote_and_block_retry(self, queue: TaskService):
        """失败 3 次后不可再重试，autonomy 为 collab"""
        task_id = await queue.create_task(
            "Sync calendars", Actor.HUMAN, autonomy=AutonomyLevel.AUTO
        )
        for _ in range(3):
            await queue.start_task(task_id, Actor.AGENT)
            await queue.fail_task(task_id, reason="api timeout")

        task = await queue.get_task(task_id)
        assert task.status == TaskStatus.TODO
        assert task.attempts == 3
        assert task.autonomy == AutonomyLevel.COLLAB

        # 第 4 次尝试：重试资格检查不通过
        assert await queue.can_retry(task_id) is False
        assert (await queue.get_task(task_id)).status == TaskStatus.TODO

    async def test_edits_never_change_autonomy(self, queue: TaskService):
        task_id = await queue.create_task(
            "Guarded", Actor.AGENT, autonomy=AutonomyLevel.AUTO_NOTIFY
        )
        await queue.update_task(task_id, {"text": "Still guarded"}, Actor.AGENT)
        await queue.update_task(task_id, {"urgency": "now"}, Actor.HUMAN)
        for actor in (Actor.AGENT, Actor.HUMAN):
            with pytest.raises(PermissionDeniedError) as exc_info:
                await queue.update_task(task_id, {"autonomy": "auto"}, actor)
            assert exc_info.value.code == ErrorCode.PERMISSION_DENIED

        assert (await queue.get_task(task_id)).autonomy == AutonomyLevel.AUTO_NOTIFY

    async def test_demotion_is_logged_in_audit(self, queue: TaskService):
        task_id = await queue.create_task(
            "Flaky", Actor.HUMAN, autonomy=AutonomyLevel.AUTO
        )
        for _ in range(3):
            await queue.fail_task(task_id)
        await queue.audit.flush()

        fails = [
            line
            for line in queue.audit.path.read_text().splitlines()
            if '"action":"fail"' in line
        ]
        assert len(fails) == 3
        assert '"attempts":3' in fails[-1]
