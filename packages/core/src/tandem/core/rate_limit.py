"""agent 提案限流

两条规则，均在写入任何行之前检查：
- agent 创建且仍处于 proposed 的任务最多 max_proposed 个
- 两次 agent 提案之间至少间隔 cooldown_s 秒（全局单一时间戳，存于 config）

检查与时间戳写入在同一个写事务内完成。
"""

import math
import time

import structlog

from .config import CONFIG_LAST_AGENT_PROPOSAL
from .exceptions import RateLimitExceededError
from .models.enums import Actor
from .store.protocols import ConfigStore, TaskStore

log = structlog.get_logger()


class ProposalRateLimiter:
    def __init__(
        self,
        task_store: TaskStore,
        config_store: ConfigStore,
        max_proposed: int = 5,
        cooldown_s: float = 60,
    ) -> None:
        self._task_store = task_store
        self._config_store = config_store
        self.max_proposed = max_proposed
        self.cooldown_s = cooldown_s

    async def check_and_record(self, now_ms: int | None = None) -> None:
        """检查两条规则，通过后记录本次提案时间（需在写事务内调用）

        Raises:
            RateLimitExceededError: context 带 proposedCount/limit 或 cooldownSec
        """
        proposed = await self._task_store.count_proposed(Actor.AGENT)
        if proposed >= self.max_proposed:
            raise RateLimitExceededError(
                f"Too many proposed tasks (max {self.max_proposed} active). "
                "Confirm or reject existing proposals first.",
                {"proposedCount": proposed, "limit": self.max_proposed},
            )

        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        wait = await self.cooldown_remaining(now_ms)
        if wait > 0:
            wait_s = math.ceil(wait / 1000)
            raise RateLimitExceededError(
                f"Agent must wait {wait_s}s between proposals",
                {"cooldownSec": wait_s},
            )

        await self._config_store.set(CONFIG_LAST_AGENT_PROPOSAL, str(now_ms))

    async def cooldown_remaining(self, now_ms: int) -> int:
        """距离冷却结束还有多少毫秒；0 表示可以提案"""
        last = await self._config_store.get(CONFIG_LAST_AGENT_PROPOSAL)
        if not last:
            return 0
        try:
            last_ms = int(last)
        except ValueError:
            # 非法值按从未提案处理，下一次提案会覆盖它
            log.warning("proposal_timestamp_invalid", key=CONFIG_LAST_AGENT_PROPOSAL)
            return 0
        elapsed = now_ms - last_ms
        remaining = int(self.cooldown_s * 1000) - elapsed
        return max(remaining, 0)
