import asyncio
import logging
from typing import Awaitable, Callable, List, Set, Tuple

from domain.errors import TerminalError
from infra.retry import backoff_delay

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60.0


class JobQueue:
    """In-process evaluation queue.

    Each job id is handled by one consumer at a time. A failed run is put back
    on the queue after an exponential delay until ``max_attempts`` runs were
    made; terminal errors are never re-enqueued.
    """

    def __init__(
        self,
        handler: Callable[[str], Awaitable[None]],
        *,
        max_attempts: int = 5,
        backoff_ms: int = 1000,
        concurrency: int = 1,
    ):
        if max_attempts < 1 or concurrency < 1:
            raise ValueError("max_attempts and concurrency must be at least 1")
        self.handler = handler
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.concurrency = concurrency
        self._queue: asyncio.Queue[Tuple[str, int]] = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._retries: Set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [asyncio.create_task(self._consume(n)) for n in range(self.concurrency)]
        logger.info("Job queue started with %d worker(s)", self.concurrency)

    async def enqueue(self, job_id: str, attempt: int = 1) -> None:
        await self._queue.put((job_id, attempt))
        logger.info("Job %s enqueued (attempt %d/%d)", job_id, attempt, self.max_attempts)

    async def join(self) -> None:
        """Wait until every queued job, including scheduled retries, is done."""
        while True:
            await self._queue.join()
            if not self._retries:
                return
            await asyncio.gather(*list(self._retries))

    async def stop(self) -> None:
        tasks = self._workers + list(self._retries)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retries.clear()
        logger.info("Job queue stopped")

    async def _consume(self, worker: int) -> None:
        while True:
            job_id, attempt = await self._queue.get()
            try:
                await self._handle(job_id, attempt)
            finally:
                self._queue.task_done()

    async def _handle(self, job_id: str, attempt: int) -> None:
        try:
            await self.handler(job_id)
        except TerminalError as exc:
            logger.error("Job %s failed with a terminal error, not retrying: %s", job_id, exc)
            return
        except Exception as exc:
            if attempt >= self.max_attempts:
                logger.error("Job %s failed after %d attempts: %s", job_id, attempt, exc)
                return
            delay = backoff_delay(attempt, self.backoff_ms / 1000, MAX_BACKOFF_SECONDS, 2.0)
            logger.warning("Job %s attempt %d failed (%s), retrying in %.1fs", job_id, attempt, exc, delay)
            task = asyncio.create_task(self._retry_later(job_id, attempt + 1, delay))
            self._retries.add(task)
            task.add_done_callback(self._retries.discard)
            return
        logger.info("Job %s processed on attempt %d", job_id, attempt)

    async def _retry_later(self, job_id: str, attempt: int, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.enqueue(job_id, attempt)
