"""
Asynchronous tier audit recording.

The orchestrator hands each TierAuditRecord to the recorder and moves on;
a single background worker drains a bounded queue into the store in FIFO
order, so records of one run are persisted in tier order. A failing or slow
store never blocks or fails an extraction: a full queue drops the record
with a warning, and store errors are logged.
"""

import asyncio
import logging
from typing import Optional, Protocol

from ..schemas.tiers import TierAuditRecord

logger = logging.getLogger(__name__)


class AuditStore(Protocol):
    async def write(self, record: TierAuditRecord) -> None:
        ...

    async def records_for(self, certificate_id: str) -> list[TierAuditRecord]:
        """Every record for a certificate, across runs, ordered by tier."""
        ...


class InMemoryAuditStore:
    """Keeps audit records in a list. Used by tests and the CLI."""

    def __init__(self):
        self.records: list[TierAuditRecord] = []

    async def write(self, record: TierAuditRecord) -> None:
        self.records.append(record)

    def for_run(self, extraction_run_id: str) -> list[TierAuditRecord]:
        return [r for r in self.records if r.extraction_run_id == extraction_run_id]

    async def records_for(self, certificate_id: str) -> list[TierAuditRecord]:
        matching = [r for r in self.records if r.certificate_id == certificate_id]
        return sorted(matching, key=lambda r: r.tier_order)


class TierAuditRecorder:
    """Bounded queue plus one worker task writing records to an AuditStore."""

    def __init__(self, store: AuditStore, max_queue_size: int = 1000):
        self.store = store
        self.max_queue_size = max_queue_size
        self.dropped = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running event loop (idempotent)."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._worker = asyncio.get_running_loop().create_task(self._run())

    def record(self, record: TierAuditRecord) -> None:
        """Enqueue a record without waiting. Drops it if the queue is full."""
        try:
            self.start()
        except RuntimeError:
            logger.warning(
                f"No running event loop, dropping audit record for {record.tier.value}"
            )
            self.dropped += 1
            return

        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Audit queue full ({self.max_queue_size}), dropping record "
                f"{record.extraction_run_id}/{record.tier.value}"
            )

    async def _run(self) -> None:
        queue = self._queue
        while True:
            record = await queue.get()
            try:
                await self.store.write(record)
            except Exception as e:
                logger.error(
                    f"Failed to write audit record {record.extraction_run_id}/"
                    f"{record.tier.value}: {e}"
                )
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued record has been handed to the store."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            self._queue = None

    async def __aenter__(self) -> "TierAuditRecorder":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
