"""In-process queue for background evidence extraction.

Jobs are delivered at least once: a failed job is re-enqueued with
exponential backoff until it has run ``max_attempts`` times. The handler is
told when it is running the final attempt so it can mark the row ``failed``
instead of ``pending``.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Set, Tuple
from uuid import UUID

from veridicus.core.exceptions import EvidenceNotFoundError
from veridicus.utils.logging import get_logger, set_correlation_id

LOGGER = get_logger(__name__)

JobHandler = Callable[[UUID, bool], Awaitable[object]]


@dataclass
class EvidenceJob:
    evidence_id: UUID
    attempt: int = 1


class EvidenceTaskQueue:
    """asyncio.Queue drained by a fixed pool of worker tasks."""

    def __init__(
        self,
        handler: JobHandler,
        workers: int = 2,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        """Initialize the queue.

        Args:
            handler: Coroutine called as ``handler(evidence_id, final_attempt)``
            workers: Number of concurrent worker tasks
            max_attempts: Total attempts per job, including the first
            retry_delay: Base delay in seconds before the first retry
        """
        self.handler = handler
        self.worker_count = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay

        self._queue: "asyncio.Queue[EvidenceJob]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._retries: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"evidence-worker-{i}")
            for i in range(self.worker_count)
        ]
        LOGGER.info("Evidence task queue started", extra={"workers": self.worker_count})

    async def stop(self) -> None:
        tasks = self._workers + list(self._retries)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retries.clear()
        LOGGER.info("Evidence task queue stopped", extra={"unprocessed": self._queue.qsize()})

    def enqueue(self, evidence_id: UUID, attempt: int = 1) -> None:
        self._queue.put_nowait(EvidenceJob(evidence_id=evidence_id, attempt=attempt))
        LOGGER.debug("Evidence job enqueued", extra={"evidence_id": str(evidence_id), "attempt": attempt})

    def recover(self, rows: Iterable[Tuple[UUID, int]]) -> List[UUID]:
        """Re-enqueue rows left unfinished by a previous process.

        Each row is ``(evidence_id, attempts_used)`` and resumes at the next
        attempt number, so a restart never grants extra attempts.

        Returns:
            Ids that already used every attempt and were not enqueued
        """
        exhausted: List[UUID] = []
        recovered = 0
        for evidence_id, attempts_used in rows:
            attempts_used = attempts_used or 0
            if attempts_used >= self.max_attempts:
                exhausted.append(evidence_id)
                continue
            self.enqueue(evidence_id, attempt=attempts_used + 1)
            recovered += 1
        if recovered or exhausted:
            LOGGER.info(
                "Recovered unfinished evidence jobs",
                extra={"recovered": recovered, "exhausted": len(exhausted)},
            )
        return exhausted

    async def join(self) -> None:
        """Wait until every enqueued job, retries included, has finished."""
        while True:
            await self._queue.join()
            if not self._retries:
                return
            await asyncio.gather(*list(self._retries), return_exceptions=True)

    def backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1))

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job)
            finally:
                self._queue.task_done()

    async def _run_job(self, job: EvidenceJob) -> None:
        set_correlation_id(f"evidence-{job.evidence_id}")
        final_attempt = job.attempt >= self.max_attempts
        try:
            await self.handler(job.evidence_id, final_attempt)
            LOGGER.info(
                "Evidence job completed",
                extra={"evidence_id": str(job.evidence_id), "attempt": job.attempt},
            )
        except asyncio.CancelledError:
            raise
        except EvidenceNotFoundError:
            LOGGER.warning(
                "Evidence row no longer exists, dropping job",
                extra={"evidence_id": str(job.evidence_id), "attempt": job.attempt},
            )
        except Exception as e:
            if final_attempt:
                LOGGER.error(
                    f"Evidence job failed permanently: {e}",
                    exc_info=True,
                    extra={"evidence_id": str(job.evidence_id), "attempt": job.attempt},
                )
                return

            delay = self.backoff(job.attempt)
            LOGGER.warning(
                f"Evidence job failed, retrying in {delay}s: {e}",
                extra={"evidence_id": str(job.evidence_id), "attempt": job.attempt},
            )
            self._schedule_retry(EvidenceJob(job.evidence_id, job.attempt + 1), delay)

    def _schedule_retry(self, job: EvidenceJob, delay: float) -> None:
        task = asyncio.create_task(self._enqueue_later(job, delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _enqueue_later(self, job: EvidenceJob, delay: float) -> None:
        await asyncio.sleep(delay)
        self.enqueue(job.evidence_id, attempt=job.attempt)

