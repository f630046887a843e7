# src/storage/job_store.py

"""Durable SQLite broker for background jobs.

A partial unique index on ``(queue, dedup_key)`` over the pending states
is what makes deduplication hold: a second insert for a key that is
already queued, active or waiting to retry is ignored, and the caller
gets the existing row back.
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.job import PENDING_STATES, Job, JobState

logger = logging.getLogger("price_engine.jobs")

_PENDING_SQL = ", ".join(f"'{s.value}'" for s in PENDING_STATES)

_SCHEMA = f"""\
CREATE TABLE IF NOT EXISTS jobs (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    queue        TEXT    NOT NULL,
    job_type     TEXT    NOT NULL,
    payload      TEXT    NOT NULL,
    dedup_key    TEXT    NOT NULL,
    priority     INTEGER NOT NULL,
    run_at       REAL    NOT NULL,
    attempts     INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL,
    backoff_base REAL    NOT NULL,
    state        TEXT    NOT NULL DEFAULT 'queued',
    last_error   TEXT    NOT NULL DEFAULT '',
    created_at   REAL    NOT NULL,
    finished_at  REAL,
    lease_until  REAL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_dedup_pending
    ON jobs(queue, dedup_key)
    WHERE state IN ({_PENDING_SQL});

CREATE INDEX IF NOT EXISTS idx_jobs_claim
    ON jobs(state, run_at, priority);

CREATE TABLE IF NOT EXISTS paused_queues (
    queue     TEXT PRIMARY KEY,
    paused_at REAL NOT NULL
);
"""

_JOB_COLUMNS = (
    "id, queue, job_type, payload, dedup_key, priority, run_at, "
    "attempts, max_attempts, backoff_base, state, last_error, "
    "created_at, finished_at, lease_until"
)


def _row_to_job(row: tuple[Any, ...]) -> Job:
    return Job(
        id=row[0],
        queue=row[1],
        job_type=row[2],
        payload=json.loads(row[3]),
        dedup_key=row[4],
        priority=row[5],
        run_at=row[6],
        attempts=row[7],
        max_attempts=row[8],
        backoff_base=row[9],
        state=JobState(row[10]),
        last_error=row[11],
        created_at=row[12],
        finished_at=row[13],
        lease_until=row[14],
    )


class JobStore:
    """Job rows plus the per-queue pause flags.

    The connection runs in autocommit mode and every multi-statement
    operation opens its own ``BEGIN IMMEDIATE`` so two workers sharing
    the file cannot claim the same row.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        lease_seconds: float | None = None,
    ) -> None:
        path = db_path or Settings.JOB_DB_PATH
        self.lease_seconds = (
            Settings.JOB_LEASE_SECONDS if lease_seconds is None
            else lease_seconds
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path),
            check_same_thread=False,
            isolation_level=None,
            timeout=30,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._migrate()
        self._lock = threading.Lock()
        logger.debug("JobStore opened at %s", path)

    def _migrate(self) -> None:
        """Add columns introduced after a database file was created."""
        columns = {
            row[1] for row in self._conn.execute("PRAGMA table_info(jobs)")
        }
        if "lease_until" not in columns:
            self._conn.execute("ALTER TABLE jobs ADD COLUMN lease_until REAL")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Submit ───────────────────────────────────────────

    def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: dict[str, Any],
        *,
        priority: int,
        delay: float,
        dedup_key: str,
        max_attempts: int,
        backoff_base: float,
        now: float | None = None,
    ) -> Job:
        """Persist a job, or return the pending one holding ``dedup_key``.

        The returned job has ``coalesced=True`` when nothing new was
        written.
        """
        ts = time.time() if now is None else now
        body = json.dumps(payload)

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                cur = self._conn.execute(
                    "INSERT OR IGNORE INTO jobs (queue, job_type, payload, "
                    "dedup_key, priority, run_at, max_attempts, "
                    "backoff_base, state, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        queue,
                        job_type,
                        body,
                        dedup_key,
                        priority,
                        ts + delay,
                        max_attempts,
                        backoff_base,
                        JobState.QUEUED.value,
                        ts,
                    ),
                )
                inserted = cur.rowcount == 1
                row = self._conn.execute(
                    f"SELECT {_JOB_COLUMNS} FROM jobs "
                    "WHERE queue = ? AND dedup_key = ? "
                    f"AND state IN ({_PENDING_SQL})",
                    (queue, dedup_key),
                ).fetchone()
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise

        job = _row_to_job(row)
        if inserted:
            logger.debug(
                "Enqueued job %d on '%s' (%s)", job.id, queue, dedup_key,
            )
        else:
            job.coalesced = True
            logger.debug(
                "Coalesced '%s' into pending job %d on '%s'",
                dedup_key, job.id, queue,
            )
        return job

    # ── Claim / settle ───────────────────────────────────

    def _requeue_stale_locked(self, ts: float) -> int:
        """Move active jobs whose lease expired back to retry.

        A job stalled on its last attempt is settled as exhausted.
        Caller holds the lock inside an open transaction.
        """
        cur = self._conn.execute(
            "UPDATE jobs SET "
            "state = CASE WHEN attempts >= max_attempts THEN ? ELSE ? END, "
            "finished_at = CASE WHEN attempts >= max_attempts "
            "THEN ? ELSE NULL END, "
            "run_at = ?, last_error = ?, lease_until = NULL "
            "WHERE state = ? AND (lease_until IS NULL OR lease_until <= ?)",
            (
                JobState.FAILED_EXHAUSTED.value,
                JobState.FAILED_RETRY.value,
                ts,
                ts,
                "stalled: lease expired before the job settled",
                JobState.ACTIVE.value,
                ts,
            ),
        )
        return cur.rowcount

    def requeue_stale(self, now: float | None = None) -> int:
        """Recover jobs left ``active`` by a crashed or killed worker."""
        ts = time.time() if now is None else now
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                count = self._requeue_stale_locked(ts)
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise
        if count:
            logger.warning("Requeued %d stalled job(s)", count)
        return count

    def claim_next(
        self,
        queues: list[str] | None = None,
        now: float | None = None,
    ) -> Job | None:
        """Atomically move the best ready job to ``active``.

        Ready means queued or waiting to retry with ``run_at <= now`` on a
        queue that is not paused.  Order: priority desc, run_at asc,
        id asc.  The claimed job's ``attempts`` is incremented and it
        holds a lease of ``lease_seconds``; stalled jobs whose lease has
        expired are requeued first.
        """
        ts = time.time() if now is None else now
        sql = (
            f"SELECT {_JOB_COLUMNS} FROM jobs "
            "WHERE state IN (?, ?) AND run_at <= ? "
            "AND queue NOT IN (SELECT queue FROM paused_queues)"
        )
        params: list[Any] = [
            JobState.QUEUED.value, JobState.FAILED_RETRY.value, ts,
        ]
        if queues:
            sql += f" AND queue IN ({', '.join('?' for _ in queues)})"
            params.extend(queues)
        sql += " ORDER BY priority DESC, run_at ASC, id ASC LIMIT 1"
        lease_until = ts + self.lease_seconds

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                stale = self._requeue_stale_locked(ts)
                row = self._conn.execute(sql, tuple(params)).fetchone()
                if row is not None:
                    self._conn.execute(
                        "UPDATE jobs SET state = ?, attempts = attempts + 1, "
                        "lease_until = ? WHERE id = ?",
                        (JobState.ACTIVE.value, lease_until, row[0]),
                    )
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise

        if stale:
            logger.warning("Requeued %d stalled job(s)", stale)
        if row is None:
            return None
        job = _row_to_job(row)
        job.state = JobState.ACTIVE
        job.attempts += 1
        job.lease_until = lease_until
        return job

    def release(self, job: Job, now: float | None = None) -> None:
        """Hand an interrupted job back to the queue.

        The attempt taken at claim time is returned, so an interruption
        does not count towards ``max_attempts``.
        """
        ts = time.time() if now is None else now
        with self._lock:
            self._conn.execute(
                "UPDATE jobs SET state = ?, attempts = MAX(attempts - 1, 0), "
                "run_at = ?, lease_until = NULL, last_error = ? "
                "WHERE id = ? AND state = ?",
                (
                    JobState.QUEUED.value,
                    ts,
                    "interrupted",
                    job.id,
                    JobState.ACTIVE.value,
                ),
            )
        job.state = JobState.QUEUED
        job.attempts = max(job.attempts - 1, 0)
        job.run_at = ts
        job.lease_until = None

    def mark_completed(self, job: Job, now: float | None = None) -> None:
        ts = time.time() if now is None else now
        with self._lock:
            self._conn.execute(
                "UPDATE jobs SET state = ?, finished_at = ?, last_error = '', "
                "lease_until = NULL WHERE id = ?",
                (JobState.COMPLETED.value, ts, job.id),
            )
        job.state = JobState.COMPLETED
        job.finished_at = ts
        job.lease_until = None

    def mark_failed(
        self, job: Job, error: str, now: float | None = None,
    ) -> Job:
        """Schedule a retry with backoff, or settle as exhausted."""
        ts = time.time() if now is None else now
        job.last_error = error
        job.lease_until = None
        if job.exhausted:
            job.state = JobState.FAILED_EXHAUSTED
            job.finished_at = ts
        else:
            job.state = JobState.FAILED_RETRY
            job.run_at = ts + job.next_delay()

        with self._lock:
            self._conn.execute(
                "UPDATE jobs SET state = ?, run_at = ?, last_error = ?, "
                "finished_at = ?, lease_until = NULL WHERE id = ?",
                (
                    job.state.value,
                    job.run_at,
                    error,
                    job.finished_at,
                    job.id,
                ),
            )
        return job

    # ── Reads ────────────────────────────────────────────

    def get_job(self, job_id: int) -> Job | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,),
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self, queue: str, state: JobState | None = None,
    ) -> list[Job]:
        sql = f"SELECT {_JOB_COLUMNS} FROM jobs WHERE queue = ?"
        params: list[Any] = [queue]
        if state is not None:
            sql += " AND state = ?"
            params.append(state.value)
        sql += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [_row_to_job(r) for r in rows]

    def count_by_state(self, queue: str) -> dict[str, int]:
        """Job counts for every state, zero-filled."""
        counts = {state.value: 0 for state in JobState}
        with self._lock:
            rows = self._conn.execute(
                "SELECT state, COUNT(*) FROM jobs WHERE queue = ? "
                "GROUP BY state",
                (queue,),
            ).fetchall()
        for state, count in rows:
            counts[state] = count
        return counts

    # ── Maintenance ──────────────────────────────────────

    def delete_finished_before(
        self, queue: str, state: JobState, cutoff: float,
    ) -> int:
        """Drop ``state`` jobs on ``queue`` that finished before ``cutoff``."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM jobs WHERE queue = ? AND state = ? "
                "AND finished_at < ?",
                (queue, state.value, cutoff),
            )
        return cur.rowcount

    def pause(self, queue: str, now: float | None = None) -> None:
        ts = time.time() if now is None else now
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO paused_queues (queue, paused_at) "
                "VALUES (?, ?)",
                (queue, ts),
            )

    def resume(self, queue: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM paused_queues WHERE queue = ?", (queue,),
            )

    def is_paused(self, queue: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM paused_queues WHERE queue = ?", (queue,),
            ).fetchone()
        return row is not None
