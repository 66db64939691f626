"""审计日志测试

测试内容：
1. 批量阈值立即落盘 / debounce 延迟落盘 / 关闭时落盘
2. 写入失败时进入 _failed_audits 兜底表
3. 服务写操作产生的审计条目
"""

import asyncio
import json
import stat
from pathlib import Path

import pytest
from tandem.core.audit import AuditLog
from tandem.core.exceptions import InvalidTransitionError
from tandem.core.models import Actor, TaskFilter
from tandem.core.store import StoreGroup
from tandem.core.task_service import TaskService


def _read_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestBatching:
    """批量与 debounce"""

    async def test_batch_threshold_triggers_write(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        audit = AuditLog(store_group, tmp_audit_path, batch_size=3, flush_ms=60_000)
        for i in range(3):
            audit.record("create", Actor.HUMAN, f"task000{i}")
        assert audit.pending == 0

        await audit.flush()
        lines = _read_lines(tmp_audit_path)
        assert [line["task_id"] for line in lines] == ["task0000", "task0001", "task0002"]

    async def test_batches_land_in_record_order(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        """每条一个批次时，文件顺序仍与记录顺序一致"""
        audit = AuditLog(store_group, tmp_audit_path, batch_size=1, flush_ms=60_000)
        expected = [f"t{i:07d}" for i in range(300)]
        for task_id in expected:
            audit.record("create", Actor.AGENT, task_id)

        await audit.aclose()

        assert [line["task_id"] for line in _read_lines(tmp_audit_path)] == expected

    async def test_flush_after_pending_batches_keeps_order(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        audit = AuditLog(store_group, tmp_audit_path, batch_size=2, flush_ms=60_000)
        for i in range(5):
            audit.record("edit", Actor.HUMAN, f"task000{i}")
        assert audit.pending == 1

        await audit.flush()

        lines = _read_lines(tmp_audit_path)
        assert [line["task_id"] for line in lines] == [f"task000{i}" for i in range(5)]

    async def test_debounce_flushes_later(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        audit = AuditLog(store_group, tmp_audit_path, batch_size=50, flush_ms=20)
        audit.record("start", Actor.AGENT, "task0001")
        assert audit.pending == 1
        assert _read_lines(tmp_audit_path) == []

        await asyncio.sleep(0.2)
        assert audit.pending == 0
        await audit.flush()
        assert len(_read_lines(tmp_audit_path)) == 1

    async def test_aclose_drains_queue(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        audit = AuditLog(store_group, tmp_audit_path, batch_size=50, flush_ms=60_000)
        audit.record("create", Actor.HUMAN, "task0001", {"text": "a"})
        audit.record("archive", Actor.HUMAN, "task0001")

        await audit.aclose()

        lines = _read_lines(tmp_audit_path)
        assert [line["action"] for line in lines] == ["create", "archive"]
        assert lines[0]["details"] == {"text": "a"}
        assert set(lines[0]) == {
            "audit_id",
            "timestamp",
            "action",
            "actor",
            "task_id",
            "details",
        }

    async def test_file_is_owner_only(
        self, store_group: StoreGroup, tmp_audit_path: Path
    ):
        AuditLog(store_group, tmp_audit_path)
        assert stat.S_IMODE(tmp_audit_path.stat().st_mode) == 0o600


class TestFallback:
    """文件写入失败时的兜底表"""

    async def test_unwritable_path_uses_fallback_table(
        self, store_group: StoreGroup, tmp_path: Path
    ):
        # 目录无法以追加模式打开
        target = tmp_path / "audit-as-dir"
        target.mkdir()
        audit = AuditLog(store_group, target, batch_size=50, flush_ms=60_000)

        audit.record("complete", Actor.AGENT, "task0001", {"unblocked": []})
        audit.record("bulk_archive", Actor.HUMAN, "multiple", {"count": 2})
        await audit.aclose()

        failed = await audit.failed_entries()
        assert [(f.action, f.actor, f.task_id) for f in failed] == [
            ("complete", "agent", "task0001"),
            ("bulk_archive", "human", "multiple"),
        ]
        assert failed[1].details["details"] == {"count": 2}
        assert all(f.error for f in failed)


class TestServiceAudit:
    """写操作的审计条目"""

    async def test_lifecycle_is_audited(self, service: TaskService):
        task_id = await service.create_task("Audited", Actor.AGENT)
        await service.confirm_task(task_id, Actor.HUMAN)
        await service.start_task(task_id, Actor.AGENT)
        await service.complete_task(task_id, Actor.AGENT, session_id="s-1")
        await service.audit.flush()

        lines = _read_lines(service.audit.path)
        assert [line["action"] for line in lines] == [
            "create",
            "confirm",
            "start",
            "complete",
        ]
        assert {line["task_id"] for line in lines} == {task_id}
        assert lines[0]["actor"] == "agent"
        assert lines[1]["actor"] == "human"
        assert lines[3]["details"]["sessionId"] == "s-1"

    async def test_failed_operation_not_audited(self, service: TaskService):
        task_id = await service.create_task("Once", Actor.HUMAN)
        await service.complete_task(task_id, Actor.HUMAN)
        with pytest.raises(InvalidTransitionError):
            await service.complete_task(task_id, Actor.HUMAN)
        await service.audit.flush()

        actions = [line["action"] for line in _read_lines(service.audit.path)]
        assert actions == ["create", "complete"]

    async def test_bulk_actions_use_multiple(self, service: TaskService):
        await service.create_task("One", Actor.HUMAN)
        await service.create_task("Two", Actor.HUMAN)
        await service.bulk_complete(TaskFilter(), Actor.HUMAN)
        await service.audit.flush()

        last = _read_lines(service.audit.path)[-1]
        assert last["action"] == "bulk_complete"
        assert last["task_id"] == "multiple"
        assert last["details"]["count"] == 2
