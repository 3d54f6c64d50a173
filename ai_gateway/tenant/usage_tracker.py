"""
Usage Tracker for the AI Gateway

Writes one ai_usage_logs row per completed exchange for:
- Billing aggregation
- Monthly quota counting (the quota ledger counts these rows)
- Failure-rate monitoring (status = provider_error)

Writes go through a bounded in-process queue drained by one background
worker. A failed or dropped write is logged and kept in `errors`; it never
reaches the request that produced it.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Deque

from ai_gateway.model_registry import ModelCatalog, DEFAULT_CATALOG
from .client import TenantDirectory

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PROVIDER_ERROR = "provider_error"

# How many recent write failures are kept for inspection
MAX_RECORDED_ERRORS = 100


@dataclass(frozen=True)
class UsageLogEntry:
    """Usage record for a single exchange."""
    user_id: str
    tenant_id: Optional[str]
    feature: str
    provider_model_id: str
    system_prompt: str
    input_text: str
    output_text: str
    status: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self, cost: Optional[float] = None) -> Dict[str, Any]:
        """Row for the ai_usage_logs table."""
        return {
            "ai_model_used": self.provider_model_id,
            "system_prompt": self.system_prompt,
            "input_text": self.input_text,
            "output_text": self.output_text,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_cost": cost,
            "organization_id": self.tenant_id,
            "service_type": self.feature,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class UsageWriteError:
    """A usage write that did not make it to the store."""
    entry: UsageLogEntry
    error: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UsageTracker:
    """
    Best-effort usage logging side channel.

    Usage:
        tracker = UsageTracker(directory)
        tracker.track_async(UsageLogEntry(...))   # never blocks, never raises
        await tracker.flush()                     # tests / shutdown
    """

    def __init__(
        self,
        directory: TenantDirectory,
        catalog: ModelCatalog = DEFAULT_CATALOG,
        queue_size: int = 1000
    ):
        """
        Initialize usage tracker.

        Args:
            directory: Store that receives the rows
            catalog: Model catalog used for the cost estimate
            queue_size: Maximum number of pending writes
        """
        self.directory = directory
        self.catalog = catalog
        self.queue_size = queue_size
        self.errors: Deque[UsageWriteError] = deque(maxlen=MAX_RECORDED_ERRORS)

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

        logger.info(f"Usage tracker initialized (queue_size={queue_size})")

    def _ensure_worker(self) -> asyncio.Queue:
        # Queue and worker are bound to the running loop, so create them lazily
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        return self._queue

    async def _run(self) -> None:
        queue = self._queue
        while True:
            entry = await queue.get()
            try:
                await self.track(entry)
            finally:
                queue.task_done()

    async def track(self, entry: UsageLogEntry) -> None:
        """
        Write one usage entry now; failures are recorded, not raised.

        Args:
            entry: Usage entry to persist
        """
        cost = self.catalog.calculate_cost(
            entry.provider_model_id,
            entry.input_tokens,
            entry.output_tokens
        )

        try:
            await self.directory.insert_usage_log(entry.to_row(cost))
            logger.debug(
                f"Usage tracked: {entry.tenant_id or entry.user_id} - {entry.provider_model_id} "
                f"{entry.feature} {entry.status} ({entry.input_tokens}+{entry.output_tokens} tokens = {cost})"
            )
        except Exception as e:
            self._record_error(entry, str(e))

    def track_async(self, entry: UsageLogEntry) -> None:
        """
        Fire-and-forget usage tracking.

        Enqueues the entry for the background worker; drops it (and records
        the drop) when the queue is full.
        """
        queue = self._ensure_worker()
        try:
            queue.put_nowait(entry)
        except asyncio.QueueFull:
            self._record_error(entry, "usage queue full, entry dropped")

    def _record_error(self, entry: UsageLogEntry, message: str) -> None:
        logger.warning(f"Failed to track usage ({entry.feature}, {entry.status}): {message}")
        self.errors.append(UsageWriteError(entry=entry, error=message))

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def flush(self) -> None:
        """Wait until every queued entry has been written (or failed)."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the worker."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._queue = None
