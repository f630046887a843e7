# src/models/job.py

"""Background job records and per-queue policies."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobState(str, Enum):
    """Lifecycle of a queued job."""

    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED_RETRY = "failed-retry"
    FAILED_EXHAUSTED = "failed-exhausted"


# States that block a second job with the same dedup key
PENDING_STATES: tuple[JobState, ...] = (
    JobState.QUEUED,
    JobState.ACTIVE,
    JobState.FAILED_RETRY,
)


@dataclass(frozen=True)
class QueuePolicy:
    """Static scheduling policy for one named queue."""

    name: str
    job_type: str
    priority: int
    max_attempts: int
    backoff_base: float     # seconds; delay = base * 2 ** (attempt - 1)
    retention: float        # seconds completed jobs are kept
    failed_retention: float  # seconds exhausted jobs are kept


@dataclass
class Job:
    """A unit of background work persisted by the job store."""

    id: int
    queue: str
    job_type: str
    payload: dict[str, Any]
    dedup_key: str
    priority: int
    run_at: float
    max_attempts: int
    backoff_base: float
    attempts: int = 0
    state: JobState = JobState.QUEUED
    last_error: str = ""
    created_at: float = 0.0
    finished_at: float | None = None
    lease_until: float | None = None   # claim expiry while active
    coalesced: bool = field(default=False, compare=False)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        """Backoff before the retry that follows the current attempt."""
        return self.backoff_base * (2 ** max(self.attempts - 1, 0))
