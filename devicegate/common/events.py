"""Change-event envelope + bounded worker pipelines.

Store listeners and chat interactions both hand work to an `EventPipeline`
instead of spawning a task per event, so a burst of appended requests or
clicks is bounded by the queue size and worker count.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from devicegate.common.config import settings
from devicegate.common.logging import log_context, logger
from devicegate.common.metrics import pipeline_dropped_total, pipeline_queue_depth
from devicegate.common.tracing import pipeline_span


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeEvent(BaseModel):
    """One change observed on a watched record set."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    change_type: ChangeType
    key: str
    data: dict[str, Any] = Field(default_factory=dict)
    observed_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class EventPipeline:
    """Bounded queue drained by a fixed pool of worker tasks.

    Queue-full policy is drop-oldest: the oldest waiting item is discarded,
    counted and logged, and handed to `on_drop` so the caller can tell
    whoever was waiting on it. Handler errors are logged per item and never
    stop a worker.
    """

    def __init__(
        self,
        name: str,
        handler: Callable[[Any], Awaitable[Any]],
        maxsize: int = 256,
        workers: int = 4,
        on_drop: Callable[[Any], Awaitable[Any]] | None = None,
    ) -> None:
        if maxsize < 1 or workers < 1:
            raise ValueError("pipeline needs maxsize >= 1 and workers >= 1")
        self.name = name
        self.handler = handler
        self.on_drop = on_drop
        self.maxsize = maxsize
        self.worker_count = workers
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._workers: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        """Create the queue and worker tasks on the running loop."""

        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info("pipeline_started pipeline=%s workers=%s maxsize=%s", self.name, self.worker_count, self.maxsize)

    async def stop(self) -> None:
        """Cancel workers and wait for them to exit."""

        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("pipeline_stopped pipeline=%s", self.name)

    def submit(self, item: Any) -> None:
        """Enqueue without blocking; evicts the oldest item when full."""

        if self._queue is None:
            raise RuntimeError(f"pipeline {self.name} not started")
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            pipeline_dropped_total.labels(service=settings.service_name, pipeline=self.name).inc()
            logger.warning(
                "pipeline_drop_oldest pipeline=%s dropped_event_id=%s",
                self.name,
                getattr(dropped, "event_id", ""),
            )
            if self.on_drop is not None:
                self._spawn(self.on_drop(dropped))
        self._queue.put_nowait(item)
        self._observe_depth()

    def submit_threadsafe(self, item: Any) -> None:
        """Schedule `submit` on the pipeline loop from a foreign thread."""

        if self._loop is None:
            raise RuntimeError(f"pipeline {self.name} not started")
        self._loop.call_soon_threadsafe(self.submit, item)

    async def join(self) -> None:
        """Wait until every queued item (and drop notice) has been handled."""

        if self._queue is not None:
            await self._queue.join()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("drop_handler_error pipeline=%s error=%s", self.name, task.exception())

    def _observe_depth(self) -> None:
        pipeline_queue_depth.labels(service=settings.service_name, pipeline=self.name).set(self.qsize())

    async def _worker(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            event_id = getattr(item, "event_id", "")
            with log_context(event_id=event_id):
                try:
                    with pipeline_span(self.name, event_id):
                        await self.handler(item)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception("handler_error pipeline=%s error=%s", self.name, exc)
                finally:
                    self._queue.task_done()
                    self._observe_depth()
