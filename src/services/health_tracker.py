# src/services/health_tracker.py

"""Thread-safe success / failure / latency counters per retailer."""

import threading
from dataclasses import dataclass


@dataclass
class RetailerCounters:
    successes: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0

    @property
    def attempts(self) -> int:
        return self.successes + self.errors

    @property
    def average_latency_ms(self) -> float:
        if not self.attempts:
            return 0.0
        return self.total_latency_ms / self.attempts


class RetailerHealthTracker:
    """Records every adapter attempt made by the source resolver.

    Shared across worker threads, so every method takes the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, RetailerCounters] = {}

    def record(
        self, retailer_id: str, success: bool, latency_ms: float,
    ) -> None:
        with self._lock:
            counters = self._counters.setdefault(
                retailer_id, RetailerCounters(),
            )
            if success:
                counters.successes += 1
            else:
                counters.errors += 1
            counters.total_latency_ms += latency_ms

    def snapshot(self, retailer_id: str) -> RetailerCounters:
        """Copy of one retailer's counters (zeros if never seen)."""
        with self._lock:
            c = self._counters.get(retailer_id, RetailerCounters())
            return RetailerCounters(
                c.successes, c.errors, c.total_latency_ms,
            )

    def retailer_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._counters)

    def drain(self) -> dict[str, RetailerCounters]:
        """Return every retailer's counters and start from zero."""
        with self._lock:
            drained = self._counters
            self._counters = {}
        return drained

    def summary(self) -> dict[str, float]:
        """Success rate and mean latency across retailers since the last drain."""
        with self._lock:
            successes = sum(c.successes for c in self._counters.values())
            attempts = sum(c.attempts for c in self._counters.values())
            latency = sum(
                c.total_latency_ms for c in self._counters.values()
            )
        return {
            "attempts": attempts,
            "success_rate": successes / attempts if attempts else 0.0,
            "average_latency_ms": latency / attempts if attempts else 0.0,
        }
