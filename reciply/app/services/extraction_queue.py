from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from reciply.app.domain.models import ExtractionJob

log = logging.getLogger("extraction_queue")

JobHandler = Callable[[ExtractionJob], Awaitable[None]]


class ExtractionQueue:
    """
    In-process work queue for submitted jobs.

    ``submit`` only enqueues; the caller never waits for the pipeline and
    learns about failures through the job record.
    """

    def __init__(self, handler: JobHandler, workers: int = 2) -> None:
        self._handler = handler
        self._worker_count = max(1, workers)
        self._queue: "asyncio.Queue[Optional[ExtractionJob]]" = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    async def start(self) -> None:
        async with self._lock:
            if self.running:
                return
            self._workers = [
                asyncio.create_task(self._run(), name=f"extraction-worker-{index}")
                for index in range(self._worker_count)
            ]
            log.info("extraction.queue_started workers=%d", self._worker_count)

    async def stop(self) -> None:
        async with self._lock:
            if not self._workers:
                return
            for _ in self._workers:
                await self._queue.put(None)
            try:
                await asyncio.gather(*self._workers)
            finally:
                self._workers = []
            log.info("extraction.queue_stopped")

    def submit(self, job: ExtractionJob) -> None:
        self._queue.put_nowait(job)
        log.info("extraction.enqueued job=%s queued=%d", job.id, self._queue.qsize())

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                self._queue.task_done()
                break
            try:
                await self._handler(job)
            except Exception:
                log.exception("extraction.worker_unexpected_error job=%s", job.id)
            finally:
                self._queue.task_done()
