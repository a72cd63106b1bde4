"""Bounded-concurrency orchestration of embedding generation.

Classes:
    BatchItem: One photo to embed, identified by id and image reference.
    ProgressSnapshot: Immutable view of the batch counters after an item settles.
    BatchProgress: Lock-protected counters shared by concurrently settling items.
    BatchEvent: Progress event emitted to streaming consumers.
    BatchSummary: Final tally returned once every item has settled.
    BatchOrchestrator: Drives an EmbeddingGenerator and EmbeddingStore over many photos.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Optional

from app.core.config import get_settings
from app.services.embedding_generator import EmbeddingGenerator, EmbeddingGeneratorUnavailable
from app.services.embedding_store import EmbeddingStore

_LOGGER = logging.getLogger(__name__)

STRATEGY_POOL = "pool"
STRATEGY_CHUNKED = "chunked"
_STRATEGIES = {STRATEGY_POOL, STRATEGY_CHUNKED}


@dataclass(slots=True, frozen=True)
class BatchItem:
    photo_id: str
    image_ref: str


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    processed: int
    total: int
    generated: int
    failed: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        # half-up, so 1 of 8 reads 13
        return int(self.processed * 100 / self.total + 0.5)


class BatchProgress:
    """Counters for one batch, updated under an ``asyncio.Lock``.

    The optional listener runs inside the critical section, so listeners
    observe snapshots in the order the counters changed.
    """

    def __init__(
        self,
        total: int,
        *,
        listener: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> None:
        self.total = total
        self._lock = asyncio.Lock()
        self._listener = listener
        self._processed = 0
        self._generated = 0
        self._failed_ids: list[str] = []

    async def record(self, photo_id: str, *, success: bool) -> ProgressSnapshot:
        async with self._lock:
            self._processed += 1
            if success:
                self._generated += 1
            else:
                self._failed_ids.append(photo_id)
            snapshot = self._snapshot()
            if self._listener is not None:
                self._listener(snapshot)
            return snapshot

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=self._processed,
            total=self.total,
            generated=self._generated,
            failed=len(self._failed_ids),
        )

    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot()

    @property
    def failed_ids(self) -> list[str]:
        return list(self._failed_ids)


@dataclass(slots=True)
class BatchEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def progress(cls, snapshot: ProgressSnapshot) -> "BatchEvent":
        return cls(
            type="progress",
            data={
                "processed": snapshot.processed,
                "total": snapshot.total,
                "generated": snapshot.generated,
                "failed": snapshot.failed,
                "percent": snapshot.percent,
            },
        )

    def to_sse(self) -> str:
        body = json.dumps({"type": self.type, **self.data}, separators=(",", ":"))
        return f"data: {body}\n\n"


@dataclass(slots=True)
class BatchSummary:
    total: int
    processed: int
    generated: int
    failed: int
    failed_ids: list[str]
    cancelled: bool = False
    processing_time_ms: float = 0.0


async def _settle(tasks: list[asyncio.Task]) -> None:
    """Await every task; on the first error or on cancellation, cancel the rest."""

    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class BatchOrchestrator:
    def __init__(
        self,
        generator: EmbeddingGenerator,
        store: EmbeddingStore,
        *,
        concurrency_limit: Optional[int] = None,
        strategy: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        limit = concurrency_limit if concurrency_limit is not None else settings.embedding_concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        chosen = (strategy or settings.embedding_batch_strategy).strip().lower()
        if chosen not in _STRATEGIES:
            raise ValueError(f"strategy must be one of {sorted(_STRATEGIES)}")
        self._generator = generator
        self._store = store
        self.concurrency_limit = limit
        self.strategy = chosen

    async def ensure_ready(self) -> None:
        """Raise EmbeddingGeneratorUnavailable before any item is scheduled."""

        if not self._generator.is_configured:
            raise EmbeddingGeneratorUnavailable("Embedding generator is not configured")
        await self._generator.prepare()

    async def run(
        self,
        user_id: str,
        items: Sequence[BatchItem],
        *,
        dimension: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchSummary:
        await self.ensure_ready()
        progress = BatchProgress(len(items))
        started = time.perf_counter()
        _LOGGER.info(
            "Generating %s embeddings for user %s (limit=%s, strategy=%s)",
            len(items),
            user_id,
            self.concurrency_limit,
            self.strategy,
        )
        await self._execute(user_id, items, dimension, progress, cancel_event)
        return self._summarise(progress, started, cancel_event)

    async def stream(
        self,
        user_id: str,
        items: Sequence[BatchItem],
        *,
        dimension: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[BatchEvent]:
        """Yield ``start``, one ``progress`` per settled item, then ``complete``.

        Closing the iterator early (consumer disconnect) cancels the work still
        in flight.
        """

        await self.ensure_ready()
        total = len(items)
        queue: asyncio.Queue[Optional[BatchEvent]] = asyncio.Queue()
        progress = BatchProgress(total, listener=lambda snapshot: queue.put_nowait(BatchEvent.progress(snapshot)))
        started = time.perf_counter()

        yield BatchEvent(type="start", data={"total": total, "message": f"Starting to process {total} photos..."})

        runner = asyncio.create_task(self._execute(user_id, items, dimension, progress, cancel_event))
        runner.add_done_callback(lambda _: queue.put_nowait(None))
        aborted: Optional[str] = None
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            await runner
        except EmbeddingGeneratorUnavailable as exc:
            _LOGGER.error("Embedding batch for user %s aborted: %s", user_id, exc)
            aborted = str(exc)
        finally:
            if not runner.done():
                _LOGGER.info("Event stream closed early; cancelling embedding batch for user %s", user_id)
                runner.cancel()
                with suppress(asyncio.CancelledError):
                    await runner

        summary = self._summarise(progress, started, cancel_event)
        data = {
            "generated": summary.generated,
            "failed": summary.failed,
            "total": summary.processed,
            "failedIds": summary.failed_ids,
            "cancelled": summary.cancelled,
            "message": f"Generated {summary.generated} embeddings, {summary.failed} failed",
        }
        if aborted is not None:
            data["error"] = aborted
            data["message"] = f"Embedding generation stopped: {aborted}"
        yield BatchEvent(type="complete", data=data)

    async def _execute(
        self,
        user_id: str,
        items: Sequence[BatchItem],
        dimension: int,
        progress: BatchProgress,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if not items:
            return
        if self.strategy == STRATEGY_CHUNKED:
            await self._run_chunked(user_id, items, dimension, progress, cancel_event)
        else:
            await self._run_pool(user_id, items, dimension, progress, cancel_event)

    async def _run_chunked(
        self,
        user_id: str,
        items: Sequence[BatchItem],
        dimension: int,
        progress: BatchProgress,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        size = self.concurrency_limit
        for start in range(0, len(items), size):
            if cancel_event is not None and cancel_event.is_set():
                return
            chunk = items[start : start + size]
            await _settle(
                [asyncio.create_task(self._process_item(user_id, item, dimension, progress)) for item in chunk]
            )

    async def _run_pool(
        self,
        user_id: str,
        items: Sequence[BatchItem],
        dimension: int,
        progress: BatchProgress,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        pending: asyncio.Queue[BatchItem] = asyncio.Queue()
        for item in items:
            pending.put_nowait(item)

        async def worker() -> None:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    return
                try:
                    item = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await self._process_item(user_id, item, dimension, progress)

        await _settle([asyncio.create_task(worker()) for _ in range(min(self.concurrency_limit, len(items)))])

    async def _process_item(
        self,
        user_id: str,
        item: BatchItem,
        dimension: int,
        progress: BatchProgress,
    ) -> None:
        try:
            vector = await self._generator.generate(item.image_ref, dimension)
            if vector is None:
                raise ValueError("Generator returned no vector")
            await self._store.upsert(item.photo_id, user_id, list(vector), dimension)
        except EmbeddingGeneratorUnavailable:
            raise
        except Exception as exc:
            _LOGGER.warning("Embedding failed for photo %s: %s", item.photo_id, exc)
            await progress.record(item.photo_id, success=False)
            return
        await progress.record(item.photo_id, success=True)

    def _summarise(
        self,
        progress: BatchProgress,
        started: float,
        cancel_event: Optional[asyncio.Event],
    ) -> BatchSummary:
        snapshot = progress.snapshot()
        cancelled = snapshot.processed < snapshot.total and bool(cancel_event and cancel_event.is_set())
        summary = BatchSummary(
            total=snapshot.total,
            processed=snapshot.processed,
            generated=snapshot.generated,
            failed=snapshot.failed,
            failed_ids=progress.failed_ids,
            cancelled=cancelled,
            processing_time_ms=round((time.perf_counter() - started) * 1000.0, 3),
        )
        _LOGGER.info(
            "Embedding batch finished: %s generated, %s failed of %s%s",
            summary.generated,
            summary.failed,
            summary.total,
            " (cancelled)" if cancelled else "",
        )
        return summary
