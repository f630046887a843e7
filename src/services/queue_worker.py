# src/services/queue_worker.py

"""Workers that claim jobs from the durable store and run their handlers."""

import asyncio
import logging

from src.config.settings import Settings
from src.models.job import Job, JobState
from src.services.errors import JobExhausted
from src.services.job_queue import JobQueue

logger = logging.getLogger("price_engine.worker")


class QueueWorker:
    """Claims one ready job at a time across its queues.

    A handler that raises moves the job to ``failed-retry`` with
    exponential backoff, or to ``failed-exhausted`` on its last
    attempt.  Exhaustion is logged and never reported to the enqueuer.
    A cancelled handler releases its job back to ``queued`` without
    spending an attempt.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        queues: list[str] | None = None,
        name: str = "worker-1",
        settings: Settings | None = None,
    ) -> None:
        self.job_queue = job_queue
        self.queues = queues
        self.name = name
        self.settings = settings or Settings()

    def _queues(self) -> list[str]:
        return self.queues or self.job_queue.registered_queues()

    async def run_once(self, now: float | None = None) -> Job | None:
        """Claim and run one ready job; ``None`` when nothing is ready."""
        queues = self._queues()
        if not queues:
            return None
        store = self.job_queue.store
        job = await asyncio.to_thread(store.claim_next, queues, now)
        if job is None:
            return None

        handler = self.job_queue.handler_for(job.queue)
        logger.info(
            "[%s] Running %s job %d (attempt %d/%d)",
            self.name, job.queue, job.id, job.attempts, job.max_attempts,
        )
        try:
            if handler is None:
                raise LookupError(f"no handler registered for '{job.queue}'")
            await handler(job)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            await asyncio.to_thread(store.mark_failed, job, error, now)
            if job.state is JobState.FAILED_EXHAUSTED:
                logger.error(
                    "[%s] %s",
                    self.name,
                    JobExhausted(job.queue, job.id, job.attempts, error),
                )
            else:
                logger.warning(
                    "[%s] %s job %d failed (%s), retry in %.1fs",
                    self.name,
                    job.queue,
                    job.id,
                    error,
                    job.next_delay(),
                    exc_info=True,
                )
            return job
        except BaseException:
            # Cancelled or interrupted mid-handler: give the job back
            store.release(job, now)
            logger.warning(
                "[%s] Interrupted %s job %d, released to the queue",
                self.name, job.queue, job.id,
            )
            raise

        await asyncio.to_thread(store.mark_completed, job, now)
        logger.info("[%s] Completed %s job %d", self.name, job.queue, job.id)
        return job

    async def drain(self, now: float | None = None) -> int:
        """Run ready jobs until none is left; returns how many ran."""
        count = 0
        while await self.run_once(now) is not None:
            count += 1
        return count

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until ``stop`` is set."""
        logger.info("[%s] Started on %s", self.name, self._queues())
        while not stop.is_set():
            job = await self.run_once()
            if job is not None:
                continue
            try:
                await asyncio.wait_for(
                    stop.wait(), timeout=self.settings.WORKER_POLL_INTERVAL,
                )
            except asyncio.TimeoutError:
                pass
        logger.info("[%s] Stopped", self.name)


class WorkerPool:
    """Runs several :class:`QueueWorker` loops against one queue set."""

    def __init__(
        self,
        job_queue: JobQueue,
        size: int = 4,
        settings: Settings | None = None,
    ) -> None:
        self.job_queue = job_queue
        self.workers = [
            QueueWorker(job_queue, name=f"worker-{i + 1}", settings=settings)
            for i in range(size)
        ]

    async def run(self, stop: asyncio.Event) -> None:
        await asyncio.to_thread(self.job_queue.store.requeue_stale)
        await asyncio.gather(*(w.run(stop) for w in self.workers))
