"""审计日志 -- 批量异步写入 append-only JSON Lines 文件

每个写操作在事务提交后调用 record()：条目进入内存队列，
队列达到 batch_size 立即落盘，否则在 flush_ms 的 debounce 之后落盘。
各批次串行写入，文件中的顺序与 record() 调用顺序一致。
文件写入失败时逐条写入 _failed_audits 兜底表，不向调用方抛错。
关闭时 aclose() 同步落盘剩余条目。
"""

import asyncio
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from .clock import utc_now
from .models.enums import Actor
from .models.history import AuditRecord, FailedAudit
from .store import StoreGroup

log = structlog.get_logger()


class AuditLog:
    """审计日志写入器"""

    def __init__(
        self,
        stores: StoreGroup,
        path: str | Path,
        batch_size: int = 50,
        flush_ms: int = 100,
    ) -> None:
        self._stores = stores
        self._path = Path(path)
        self._batch_size = batch_size
        self._flush_delay = flush_ms / 1000
        self._queue: list[AuditRecord] = []
        self._timer: asyncio.TimerHandle | None = None
        self._writes: set[asyncio.Task] = set()
        # 批次按入队顺序逐个落盘
        self._write_lock = asyncio.Lock()
        self._ensure_file()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pending(self) -> int:
        """尚未落盘的条目数"""
        return len(self._queue)

    def record(
        self,
        action: str,
        actor: Actor,
        task_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord:
        """追加一条审计记录到队列（需在事件循环中调用）"""
        entry = AuditRecord(
            audit_id=str(ULID()),
            timestamp=utc_now(),
            action=action,
            actor=actor,
            task_id=task_id,
            details=details or {},
        )
        self._queue.append(entry)

        if len(self._queue) >= self._batch_size:
            self._start_write()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._flush_delay, self._start_write)
        return entry

    async def flush(self) -> None:
        """立即落盘队列中的全部条目，并等待进行中的写入完成"""
        self._start_write()
        if self._writes:
            await asyncio.gather(*self._writes)

    async def aclose(self) -> None:
        await self.flush()

    async def failed_entries(self) -> list[FailedAudit]:
        """兜底表中的全部条目（按写入顺序）"""
        return await self._stores.failed_audit_store.list_all()

    def _start_write(self) -> None:
        self._cancel_timer()
        batch = self._drain()
        if not batch:
            return
        task = asyncio.get_running_loop().create_task(self._write_batch(batch))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drain(self) -> list[AuditRecord]:
        batch, self._queue = self._queue, []
        return batch

    async def _write_batch(self, batch: list[AuditRecord]) -> None:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._append_lines, batch)
            except OSError as e:
                log.warning(
                    "audit_flush_failed",
                    count=len(batch),
                    error_type=type(e).__name__,
                )
                await self._persist_fallback(batch, str(e))

    async def _persist_fallback(self, batch: list[AuditRecord], error: str) -> None:
        try:
            async with self._stores.transaction():
                for entry in batch:
                    await self._stores.failed_audit_store.append(entry, error)
        except aiosqlite.Error as db_error:
            log.error(
                "audit_fallback_failed",
                count=len(batch),
                error_type=type(db_error).__name__,
            )

    def _append_lines(self, batch: list[AuditRecord]) -> None:
        text = "".join(entry.model_dump_json() + "\n" for entry in batch)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(text)

    def _ensure_file(self) -> None:
        """创建审计文件（仅属主可读写）；失败时留给 flush 走兜底"""
        try:
            self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            if not self._path.exists():
                self._path.touch(mode=0o600)
        except OSError as e:
            log.warning(
                "permission_setup_failed",
                path=str(self._path),
                error_type=type(e).__name__,
            )
