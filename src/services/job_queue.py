# src/services/job_queue.py

"""Named job queues with per-queue priority, delay, retry and dedup policy."""

import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from src.models.job import Job, JobState, QueuePolicy
from src.storage.job_store import JobStore

logger = logging.getLogger("price_engine.queue")

PRICE_UPDATES = "price-updates"
IMAGE_RECOGNITION = "image-recognition"
SCRAPING = "scraping"
NOTIFICATIONS = "notifications"

_HOUR = 60 * 60

QUEUE_POLICIES: dict[str, QueuePolicy] = {
    PRICE_UPDATES: QueuePolicy(
        name=PRICE_UPDATES,
        job_type="update-price",
        priority=5,
        max_attempts=3,
        backoff_base=2.0,
        retention=24 * _HOUR,
        failed_retention=72 * _HOUR,
    ),
    IMAGE_RECOGNITION: QueuePolicy(
        name=IMAGE_RECOGNITION,
        job_type="recognize-image",
        priority=10,
        max_attempts=2,
        backoff_base=1.0,
        retention=12 * _HOUR,
        failed_retention=36 * _HOUR,
    ),
    SCRAPING: QueuePolicy(
        name=SCRAPING,
        job_type="scrape-product",
        priority=5,
        max_attempts=5,
        backoff_base=5.0,
        retention=48 * _HOUR,
        failed_retention=7 * 24 * _HOUR,
    ),
    NOTIFICATIONS: QueuePolicy(
        name=NOTIFICATIONS,
        job_type="send-notification",
        priority=3,
        max_attempts=3,
        backoff_base=1.0,
        retention=6 * _HOUR,
        failed_retention=24 * _HOUR,
    ),
}

# price-update priority label -> (queue priority, delay seconds)
PRICE_UPDATE_PRIORITIES: dict[str, tuple[int, float]] = {
    "high": (10, 0.0),
    "medium": (5, 5.0),
    "low": (1, 30.0),
}

SCRAPING_MAX_JITTER = 10.0
NOTIFICATION_DELAY = 1.0
NOTIFICATION_TYPES = ("price_alert", "new_deal", "scan_complete")

JobHandler = Callable[[Job], Awaitable[Any]]


def _policy(queue: str) -> QueuePolicy:
    try:
        return QUEUE_POLICIES[queue]
    except KeyError:
        raise ValueError(f"Unknown queue: {queue}") from None


class JobQueue:
    """Submit-only front end over the durable :class:`JobStore`.

    ``enqueue*`` returns once the row is committed.  There is no cancel
    handle; a second enqueue with a pending dedup key returns the
    existing job instead of creating one.
    """

    def __init__(
        self,
        store: JobStore,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self._rng = rng or random.Random()
        self._handlers: dict[str, JobHandler] = {}

    # ── Generic submit ───────────────────────────────────

    def enqueue(
        self,
        queue: str,
        payload: dict[str, Any],
        *,
        dedup_key: str,
        priority: int | None = None,
        delay: float = 0.0,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        now: float | None = None,
    ) -> Job:
        policy = _policy(queue)
        job = self.store.enqueue(
            queue,
            policy.job_type,
            payload,
            priority=policy.priority if priority is None else priority,
            delay=delay,
            dedup_key=dedup_key,
            max_attempts=(
                policy.max_attempts if max_attempts is None else max_attempts
            ),
            backoff_base=(
                policy.backoff_base if backoff_base is None else backoff_base
            ),
            now=now,
        )
        if not job.coalesced:
            logger.info(
                "Queued %s job %d (%s, priority %d, delay %.1fs)",
                queue, job.id, dedup_key, job.priority, delay,
            )
        return job

    # ── Typed helpers ────────────────────────────────────

    def enqueue_price_update(
        self,
        product_id: str,
        retailer_id: str,
        priority: str = "medium",
        now: float | None = None,
    ) -> Job:
        if priority not in PRICE_UPDATE_PRIORITIES:
            raise ValueError(f"Unknown price-update priority: {priority}")
        level, delay = PRICE_UPDATE_PRIORITIES[priority]
        return self.enqueue(
            PRICE_UPDATES,
            {
                "product_id": product_id,
                "retailer_id": retailer_id,
                "priority": priority,
            },
            dedup_key=f"price-update:{product_id}:{retailer_id}",
            priority=level,
            delay=delay,
            now=now,
        )

    def enqueue_image_recognition(
        self,
        scan_id: str,
        image_url: str,
        image_hash: str = "",
        user_id: str = "",
        now: float | None = None,
    ) -> Job:
        return self.enqueue(
            IMAGE_RECOGNITION,
            {
                "scan_id": scan_id,
                "image_url": image_url,
                "image_hash": image_hash,
                "user_id": user_id,
            },
            dedup_key=f"image-recognition:{scan_id}",
            now=now,
        )

    def enqueue_scraping(
        self,
        retailer_id: str,
        product_url: str,
        product_id: str,
        now: float | None = None,
    ) -> Job:
        # Uniform 0-10s start delay
        return self.enqueue(
            SCRAPING,
            {
                "retailer_id": retailer_id,
                "product_url": product_url,
                "product_id": product_id,
            },
            dedup_key=f"scraping:{retailer_id}:{product_id}",
            delay=self._rng.uniform(0, SCRAPING_MAX_JITTER),
            now=now,
        )

    def enqueue_notification(
        self,
        user_id: str,
        notification_type: str,
        data: dict[str, Any],
        now: float | None = None,
    ) -> Job:
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(
                f"Unknown notification type: {notification_type}"
            )
        ts = time.time() if now is None else now
        return self.enqueue(
            NOTIFICATIONS,
            {"user_id": user_id, "type": notification_type, "data": data},
            dedup_key=f"notification:{user_id}:{int(ts * 1000)}",
            delay=NOTIFICATION_DELAY,
            now=ts,
        )

    def enqueue_product_refresh(
        self,
        product_id: str,
        retailer_ids: list[str],
        priority: str = "medium",
        now: float | None = None,
    ) -> list[Job]:
        """One price-update job per retailer for ``product_id``."""
        return [
            self.enqueue_price_update(product_id, rid, priority, now=now)
            for rid in retailer_ids
        ]

    # ── Workers ──────────────────────────────────────────

    def register_worker(self, queue: str, handler: JobHandler) -> None:
        _policy(queue)
        self._handlers[queue] = handler
        logger.debug("Registered handler for '%s'", queue)

    def handler_for(self, queue: str) -> JobHandler | None:
        return self._handlers.get(queue)

    def registered_queues(self) -> list[str]:
        return list(self._handlers)

    # ── Monitoring & maintenance ─────────────────────────

    def get_stats(self) -> dict[str, Any]:
        """Per-queue job counts by state, plus a timestamp."""
        stats: dict[str, Any] = {
            name: {
                **self.store.count_by_state(name),
                "paused": self.store.is_paused(name),
            }
            for name in QUEUE_POLICIES
        }
        stats["timestamp"] = datetime.now().isoformat()
        return stats

    def clean_completed(self, now: float | None = None) -> dict[str, int]:
        """Delete settled jobs past their queue's retention window.

        Completed jobs use ``retention``; exhausted jobs use the longer
        ``failed_retention``.
        """
        ts = time.time() if now is None else now
        removed: dict[str, int] = {}
        for name, policy in QUEUE_POLICIES.items():
            removed[name] = self.store.delete_finished_before(
                name, JobState.COMPLETED, ts - policy.retention,
            ) + self.store.delete_finished_before(
                name, JobState.FAILED_EXHAUSTED, ts - policy.failed_retention,
            )
        total = sum(removed.values())
        if total:
            logger.info("Cleaned %d settled jobs: %s", total, removed)
        return removed

    def pause(self, queue: str) -> None:
        _policy(queue)
        self.store.pause(queue)
        logger.info("Paused queue '%s'", queue)

    def resume(self, queue: str) -> None:
        _policy(queue)
        self.store.resume(queue)
        logger.info("Resumed queue '%s'", queue)
