"""agent 提案限流测试"""

from pathlib import Path

import pytest
from tandem.core.audit import AuditLog
from tandem.core.config import CONFIG_LAST_AGENT_PROPOSAL, QueueSettings
from tandem.core.exceptions import ErrorCode, RateLimitExceededError
from tandem.core.models import Actor, TaskStatus
from tandem.core.rate_limit import ProposalRateLimiter
from tandem.core.store import StoreGroup
from tandem.core.task_service import TaskService


class TestProposalCount:
    """proposed 数量上限"""

    async def test_sixth_proposal_rejected(self, service: TaskService):
        proposals = [
            await service.create_task(f"Idea {i}", Actor.AGENT) for i in range(5)
        ]

        with pytest.raises(RateLimitExceededError) as exc_info:
            await service.create_task("Idea 6", Actor.AGENT)
        assert exc_info.value.code == ErrorCode.RATE_LIMIT_EXCEEDED
        assert exc_info.value.context == {"proposedCount": 5, "limit": 5}
        assert (await service.get_stats())["total"] == 5

        # 确认一个后腾出名额
        await service.confirm_task(proposals[0], Actor.HUMAN)
        await service.create_task("Idea 6", Actor.AGENT)

    async def test_human_tasks_not_limited(self, service: TaskService):
        for i in range(5):
            await service.create_task(f"Idea {i}", Actor.AGENT)
        await service.create_task("Human task", Actor.HUMAN)
        assert (await service.get_stats())["total"] == 6

    async def test_rejected_proposals_free_slots(self, service: TaskService):
        proposals = [
            await service.create_task(f"Idea {i}", Actor.AGENT) for i in range(5)
        ]
        await service.reject_task(proposals[-1], Actor.HUMAN)
        await service.create_task("Replacement", Actor.AGENT)


class TestCooldown:
    """提案冷却"""

    async def test_back_to_back_proposals(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        audit = AuditLog(store_group, tmp_audit_path)
        svc = TaskService(store_group, audit, QueueSettings(proposal_cooldown_s=60))
        try:
            await svc.create_task("First idea", Actor.AGENT)
            with pytest.raises(RateLimitExceededError) as exc_info:
                await svc.create_task("Second idea", Actor.AGENT)
            assert 0 < exc_info.value.context["cooldownSec"] <= 60
            assert (await svc.get_stats())["total"] == 1

            # human 创建不受冷却影响
            await svc.create_task("Human task", Actor.HUMAN)
        finally:
            await audit.aclose()

    async def test_cooldown_window(self, store_group: StoreGroup):
        limiter = ProposalRateLimiter(
            store_group.task_store, store_group.config_store, cooldown_s=60
        )
        start = 1_700_000_000_000

        async with store_group.transaction():
            await limiter.check_and_record(start)
        assert await store_group.config_store.get(CONFIG_LAST_AGENT_PROPOSAL) == str(
            start
        )

        with pytest.raises(RateLimitExceededError) as exc_info:
            async with store_group.transaction():
                await limiter.check_and_record(start + 30_000)
        assert exc_info.value.context == {"cooldownSec": 30}

        # 失败的检查不会刷新时间戳
        assert await limiter.cooldown_remaining(start + 59_500) == 500
        async with store_group.transaction():
            await limiter.check_and_record(start + 60_000)

    async def test_partial_seconds_round_up(self, store_group: StoreGroup):
        limiter = ProposalRateLimiter(
            store_group.task_store, store_group.config_store, cooldown_s=60
        )
        async with store_group.transaction():
            await limiter.check_and_record(0)
        with pytest.raises(RateLimitExceededError) as exc_info:
            async with store_group.transaction():
                await limiter.check_and_record(59_001)
        assert exc_info.value.context["cooldownSec"] == 1

    async def test_unparseable_timestamp_treated_as_no_prior(
        self, service: TaskService
    ):
        await service.set_config(CONFIG_LAST_AGENT_PROPOSAL, "yesterday")

        task_id = await service.create_task("Proposal", Actor.AGENT)

        assert (await service.get_task(task_id)).status == TaskStatus.PROPOSED
        assert (await service.get_config(CONFIG_LAST_AGENT_PROPOSAL)).isdigit()

    async def test_cooldown_remaining_ignores_garbage(self, store_group: StoreGroup):
        limiter = ProposalRateLimiter(
            store_group.task_store, store_group.config_store, cooldown_s=60
        )
        async with store_group.transaction():
            await store_group.config_store.set(CONFIG_LAST_AGENT_PROPOSAL, "not-a-number")
        assert await limiter.cooldown_remaining(1_700_000_000_000) == 0
