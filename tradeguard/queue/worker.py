"""Worker pool consuming named queues with bounded, backed-off retries."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tradeguard.errors import TradeGuardError
from tradeguard.queue.jobs import Job
from tradeguard.runtime.background import BackgroundTasks

logger = logging.getLogger(__name__)

Handler = Callable[[Job], Awaitable[Any]]
ExhaustedHook = Callable[[Job, BaseException], Awaitable[None]]


@dataclass
class _Route:
    handler: Handler
    on_exhausted: ExhaustedHook | None = None


class WorkerPool:
    """Runs ``concurrency`` workers per registered queue.

    Retry policy: a ``TradeGuardError`` with ``retryable`` set is re-queued after
    ``backoff_seconds * 2**attempt`` until ``max_attempts`` is spent, then the
    job's ``on_exhausted`` hook runs. Other ``TradeGuardError``s are dropped after
    logging. Anything unclassified is not retried but still reaches the hook so
    the owning entity can be marked failed.
    """

    def __init__(
        self,
        queue: Any,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        tasks: BackgroundTasks | None = None,
        poll_timeout: float = 1.0,
    ):
        self.queue = queue
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.tasks = tasks or BackgroundTasks()
        self.poll_timeout = poll_timeout
        self._routes: dict[tuple[str, str], _Route] = {}
        self._concurrency: dict[str, int] = {}
        self._workers: list[asyncio.Task] = []
        self._running = False
        self.processed = 0
        self.failed = 0

    def register(
        self,
        queue_name: str,
        job_name: str,
        handler: Handler,
        concurrency: int = 5,
        on_exhausted: ExhaustedHook | None = None,
    ) -> None:
        self._routes[(str(queue_name), str(job_name))] = _Route(handler, on_exhausted)
        self._concurrency[str(queue_name)] = max(
            concurrency, self._concurrency.get(str(queue_name), 0)
        )

    @property
    def queue_names(self) -> list[str]:
        return list(self._concurrency)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for queue_name, concurrency in self._concurrency.items():
            for i in range(concurrency):
                self._workers.append(
                    asyncio.get_running_loop().create_task(
                        self._work(queue_name), name=f"worker:{queue_name}:{i}"
                    )
                )
        logger.info(
            "Worker pool started: %s",
            ", ".join(f"{q}x{c}" for q, c in self._concurrency.items()),
        )

    async def stop(self) -> None:
        """Let in-flight jobs finish their current step, then cancel workers."""
        self._running = False
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        await self.tasks.shutdown()
        logger.info("Worker pool stopped: %d processed, %d failed", self.processed, self.failed)

    async def _work(self, queue_name: str) -> None:
        while self._running:
            try:
                job = await self.queue.dequeue(queue_name, timeout=self.poll_timeout)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dequeue from %s failed", queue_name)
                await asyncio.sleep(self.poll_timeout)
                continue
            if job is not None:
                await self.process(job)

    async def drain(self) -> int:
        """Process queued jobs inline until every registered queue is empty."""
        handled = 0
        while True:
            progressed = False
            for queue_name in self.queue_names:
                job = await self.queue.dequeue(queue_name, timeout=0)
                if job is not None:
                    await self.process(job)
                    handled += 1
                    progressed = True
            if not progressed:
                return handled

    async def process(self, job: Job) -> None:
        route = self._routes.get((job.queue, job.name))
        if route is None:
            logger.error("No handler for job %s on queue %s; dropping", job.name, job.queue)
            return
        try:
            await route.handler(job)
            self.processed += 1
        except asyncio.CancelledError:
            raise
        except TradeGuardError as e:
            self.failed += 1
            if not e.retryable:
                logger.warning(
                    "Job %s %s rejected (%s): %s", job.name, job.id, e.code, e.message
                )
                return
            if job.attempt + 1 < self.max_attempts:
                delay = self.backoff_seconds * (2 ** job.attempt)
                logger.warning(
                    "Job %s %s failed (%s), retry %d/%d in %.1fs",
                    job.name, job.id, e.code, job.attempt + 2, self.max_attempts, delay,
                )
                self.tasks.spawn(self._requeue(job.next_attempt(), delay))
                return
            logger.error(
                "Job %s %s exhausted %d attempts: %s", job.name, job.id, self.max_attempts, e
            )
            await self._exhausted(route, job, e)
        except Exception as e:
            self.failed += 1
            logger.exception("Job %s %s crashed", job.name, job.id)
            await self._exhausted(route, job, e)

    async def _requeue(self, job: Job, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await self.queue.put(job)

    async def _exhausted(self, route: _Route, job: Job, error: BaseException) -> None:
        if route.on_exhausted is None:
            return
        try:
            await route.on_exhausted(job, error)
        except Exception:
            logger.exception("on_exhausted hook for job %s %s failed", job.name, job.id)
