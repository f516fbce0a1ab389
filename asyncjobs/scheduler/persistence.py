"""
Job Store for the scheduler core.

SQLite persistence for Job records, their state chunks and exception
records. Every operation is scoped to an explicit owner_id; rows belonging
to other owners are invisible.

Provides:
- Upsert of jobs with optional wholesale replacement of state chunks
- Scheduler queries (scheduled jobs, schedulable/active counts)
- Atomic QUEUED -> RUNNING claim
- Append-only exception log
- Admin listing and per-status totals

Change listeners registered with add_listener() see every persist() call
before the write and after commit.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Sequence

from .codec import StateCodec
from .entities import (
    Job,
    JobException,
    JobStateChunk,
    JobStatus,
    SCHEDULER_TYPE,
    generate_uuid,
    now_iso,
)
from .errors import (
    ConcurrencyViolationError,
    InvalidOperationError,
    JobNotFoundError,
)


# (previous stored record or None for inserts, record being written)
JobChange = tuple[Optional[Job], Job]

# Columns that admin listings may sort by
SORTABLE_COLUMNS = (
    "scheduled_run_time",
    "status",
    "runnable_type",
    "reference",
    "retry_number",
    "last_run_time",
    "created_at",
)

JOB_COLUMNS = (
    "job_id",
    "owner_id",
    "runnable_type",
    "status",
    "reference",
    "maximum_retries",
    "retry_number",
    "retry_interval",
    "scheduled_run_time",
    "last_run_time",
    "dispatch_unit_id",
    "run_time",
    "created_at",
)


class ChangeListener(Protocol):
    """Hook notified around JobStore.persist()."""

    def before_persist(self, changes: list[JobChange]) -> None:
        """May modify the jobs being written, or raise to abort the write."""
        ...

    def after_persist(self, changes: list[JobChange]) -> None:
        ...


class JobStore:
    """
    SQLite-based Job Store.

    - Abstracts SQLite storage (connection per operation, WAL mode)
    - Does NOT contain scheduling logic
    - Each call is atomic on its own; multi-call sequences are not
    """

    def __init__(self, db_path: str | Path, codec: Optional[StateCodec] = None):
        """
        Initialize the job store.

        Args:
            db_path: Path to SQLite database file
            codec: State codec used for state chunks (default chunk size if omitted)
        """
        self.db_path = str(db_path)
        self.codec = codec or StateCodec()
        self._listeners: list[ChangeListener] = []
        self._init_db()

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    runnable_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    reference TEXT,
                    maximum_retries INTEGER NOT NULL DEFAULT 0,
                    retry_number INTEGER NOT NULL DEFAULT 0,
                    retry_interval INTEGER NOT NULL DEFAULT 0,
                    scheduled_run_time TEXT,
                    last_run_time TEXT,
                    dispatch_unit_id TEXT,
                    run_time INTEGER,
                    created_at TEXT NOT NULL
                )
            """)

            # Index for scheduler queries
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_schedule
                ON jobs (owner_id, status, runnable_type, scheduled_run_time)
            """)

            # State chunks, replaced wholesale on every state-bearing persist
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_states (
                    job_id TEXT NOT NULL,
                    chunk_number INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    PRIMARY KEY (job_id, chunk_number),
                    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
                )
            """)

            # Append-only; outlives the job it describes
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_exceptions (
                    exception_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    job_id TEXT NOT NULL,
                    retry_number INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    dispatch_unit_id TEXT,
                    exception_type TEXT NOT NULL,
                    message TEXT NOT NULL,
                    stack_trace TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_job_exceptions_job_id
                ON job_exceptions (owner_id, job_id)
            """)

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _row_to_job(self, row: sqlite3.Row, chunks: Sequence[JobStateChunk] = ()) -> Job:
        """Convert a database row (and its state chunks) to a Job entity."""
        return Job(
            job_id=row["job_id"],
            owner_id=row["owner_id"],
            runnable_type=row["runnable_type"],
            status=JobStatus(row["status"]),
            state=self.codec.decode(chunks) if chunks else {},
            reference=row["reference"],
            maximum_retries=row["maximum_retries"],
            retry_number=row["retry_number"],
            retry_interval=row["retry_interval"],
            scheduled_run_time=row["scheduled_run_time"],
            last_run_time=row["last_run_time"],
            dispatch_unit_id=row["dispatch_unit_id"],
            run_time=row["run_time"],
            created_at=row["created_at"],
        )

    def _load_chunks(
        self,
        conn: sqlite3.Connection,
        job_ids: Sequence[str],
    ) -> dict[str, list[JobStateChunk]]:
        """Fetch state chunks for many jobs in one query."""
        chunks: dict[str, list[JobStateChunk]] = {}
        if not job_ids:
            return chunks

        placeholders = ", ".join("?" for _ in job_ids)
        rows = conn.execute(
            f"""
            SELECT job_id, chunk_number, content FROM job_states
            WHERE job_id IN ({placeholders})
            ORDER BY job_id, chunk_number
            """,
            list(job_ids),
        ).fetchall()

        for row in rows:
            chunks.setdefault(row["job_id"], []).append(
                JobStateChunk(
                    job_id=row["job_id"],
                    chunk_number=row["chunk_number"],
                    content=row["content"],
                )
            )
        return chunks

    def _rows_to_jobs(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Job]:
        chunks = self._load_chunks(conn, [row["job_id"] for row in rows])
        return [self._row_to_job(row, chunks.get(row["job_id"], ())) for row in rows]

    # =========================================================================
    # Job Operations
    # =========================================================================

    def get_job(self, owner_id: str, job_id: str) -> Job:
        """
        Get a job (with its decoded state) by ID.

        Raises:
            JobNotFoundError: If the job doesn't exist for this owner
        """
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ? AND owner_id = ?",
                (job_id, owner_id),
            ).fetchone()

            if row is None:
                raise JobNotFoundError(job_id)

            return self._rows_to_jobs(conn, [row])[0]

    def get_jobs(self, owner_id: str, job_ids: Iterable[str]) -> list[Job]:
        """Get several jobs by ID; unknown ids are skipped."""
        job_ids = list(job_ids)
        if not job_ids:
            return []

        placeholders = ", ".join("?" for _ in job_ids)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs WHERE owner_id = ? AND job_id IN ({placeholders})",
                [owner_id, *job_ids],
            ).fetchall()
            return self._rows_to_jobs(conn, rows)

    def persist(
        self,
        owner_id: str,
        jobs: Sequence[Job],
        save_state: bool = False,
    ) -> list[Job]:
        """
        Insert or update jobs.

        Unsaved jobs (job_id None) are assigned ids. With save_state, every
        job's state chunks are deleted and re-inserted from job.state in the
        same transaction.

        Args:
            owner_id: Owner scope; every job must belong to it
            jobs: Jobs to write
            save_state: Also replace the stored state chunks

        Returns:
            The written jobs (same objects, ids assigned)

        Raises:
            InvalidOperationError: If a job belongs to another owner (nothing
                is written)
        """
        jobs = list(jobs)
        if not jobs:
            return jobs

        for job in jobs:
            if job.owner_id != owner_id:
                raise InvalidOperationError(
                    f"Job {job.job_id} belongs to owner {job.owner_id}, not {owner_id}"
                )

        existing = {
            job.job_id: job
            for job in self.get_jobs(owner_id, [j.job_id for j in jobs if j.job_id])
        }
        changes: list[JobChange] = [
            (existing.get(job.job_id) if job.job_id else None, job) for job in jobs
        ]

        for listener in self._listeners:
            listener.before_persist(changes)

        with self._transaction() as conn:
            for job in jobs:
                if job.job_id is None:
                    job.job_id = generate_uuid()

                values = [getattr(job, column) for column in JOB_COLUMNS]
                values[JOB_COLUMNS.index("status")] = job.status.value
                updates = ", ".join(
                    f"{column} = excluded.{column}"
                    for column in JOB_COLUMNS
                    if column not in ("job_id", "owner_id", "created_at")
                )

                cursor = conn.execute(
                    f"""
                    INSERT INTO jobs ({', '.join(JOB_COLUMNS)})
                    VALUES ({', '.join('?' for _ in JOB_COLUMNS)})
                    ON CONFLICT(job_id) DO UPDATE SET {updates}
                    WHERE jobs.owner_id = excluded.owner_id
                    """,
                    values,
                )
                if cursor.rowcount == 0:
                    raise InvalidOperationError(
                        f"Job {job.job_id} belongs to another owner"
                    )

            if save_state:
                for job in jobs:
                    conn.execute("DELETE FROM job_states WHERE job_id = ?", (job.job_id,))
                    conn.executemany(
                        """
                        INSERT INTO job_states (job_id, chunk_number, content)
                        VALUES (?, ?, ?)
                        """,
                        [
                            (job.job_id, chunk.chunk_number, chunk.content)
                            for chunk in self.codec.encode(job, job.state)
                        ],
                    )

        for listener in self._listeners:
            listener.after_persist(changes)

        return jobs

    def remove(self, owner_id: str, jobs: Sequence[Job]) -> None:
        """Delete jobs and their state chunks. Exception records are kept."""
        job_ids = [job.job_id for job in jobs if job.job_id]
        if not job_ids:
            return

        placeholders = ", ".join("?" for _ in job_ids)
        with self._transaction() as conn:
            conn.execute(
                f"""
                DELETE FROM job_states WHERE job_id IN (
                    SELECT job_id FROM jobs WHERE owner_id = ? AND job_id IN ({placeholders})
                )
                """,
                [owner_id, *job_ids],
            )
            conn.execute(
                f"DELETE FROM jobs WHERE owner_id = ? AND job_id IN ({placeholders})",
                [owner_id, *job_ids],
            )

    def save_run(self, owner_id: str, job: Job) -> bool:
        """
        Write a finished run's stamps and state to a job that is still RUNNING.

        Status is never written and change listeners are not notified, so a
        cancellation committed while the job ran is left in place.

        Returns:
            True if the job was still RUNNING and was updated
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET last_run_time = ?, dispatch_unit_id = ?, run_time = ?
                WHERE job_id = ? AND owner_id = ? AND status = ?
                """,
                (
                    job.last_run_time,
                    job.dispatch_unit_id,
                    job.run_time,
                    job.job_id,
                    owner_id,
                    JobStatus.RUNNING.value,
                ),
            )
            if cursor.rowcount == 0:
                return False

            conn.execute("DELETE FROM job_states WHERE job_id = ?", (job.job_id,))
            conn.executemany(
                "INSERT INTO job_states (job_id, chunk_number, content) VALUES (?, ?, ?)",
                [
                    (job.job_id, chunk.chunk_number, chunk.content)
                    for chunk in self.codec.encode(job, job.state)
                ],
            )
        return True

    def claim(self, owner_id: str, job_id: str) -> Job:
        """
        Atomically transition a job QUEUED -> RUNNING.

        Does not notify change listeners.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConcurrencyViolationError: If job is not QUEUED (already claimed/cancelled)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs SET status = ?
                WHERE job_id = ? AND owner_id = ? AND status = ?
                """,
                (JobStatus.RUNNING.value, job_id, owner_id, JobStatus.QUEUED.value),
            )

            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM jobs WHERE job_id = ? AND owner_id = ?",
                    (job_id, owner_id),
                ).fetchone()

                if row is None:
                    raise JobNotFoundError(job_id)

                raise ConcurrencyViolationError(
                    job_id,
                    expected_status=JobStatus.QUEUED.value,
                    actual_status=row["status"],
                )

        return self.get_job(owner_id, job_id)

    # =========================================================================
    # Scheduler Queries
    # =========================================================================

    def get_scheduled_jobs(self, owner_id: str, max_jobs: int) -> list[Job]:
        """
        Get QUEUED non-scheduler jobs that are due, oldest scheduled_run_time first.
        """
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE owner_id = ? AND status = ? AND runnable_type != ?
                  AND scheduled_run_time <= ?
                ORDER BY scheduled_run_time ASC, created_at ASC, rowid ASC
                LIMIT ?
                """,
                (owner_id, JobStatus.QUEUED.value, SCHEDULER_TYPE, now_iso(), max_jobs),
            ).fetchall()
            return self._rows_to_jobs(conn, rows)

    def count_schedulable(self, owner_id: str) -> int:
        """Count QUEUED or RUNNING jobs, excluding scheduler jobs."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count FROM jobs
                WHERE owner_id = ? AND status IN (?, ?) AND runnable_type != ?
                """,
                (owner_id, JobStatus.QUEUED.value, JobStatus.RUNNING.value, SCHEDULER_TYPE),
            ).fetchone()
        return row["count"]

    def count_active(self, owner_id: str, runnable_type: str) -> int:
        """Count RUNNING jobs of one runnable type."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS count FROM jobs
                WHERE owner_id = ? AND status = ? AND runnable_type = ?
                """,
                (owner_id, JobStatus.RUNNING.value, runnable_type),
            ).fetchone()
        return row["count"]

    def get_jobs_by_status(
        self,
        owner_id: str,
        statuses: Sequence[JobStatus],
        runnable_type: Optional[str] = None,
    ) -> list[Job]:
        """All jobs in the given statuses, optionally of one runnable type."""
        clauses = [
            "owner_id = ?",
            f"status IN ({', '.join('?' for _ in statuses)})",
        ]
        values: list = [owner_id, *(JobStatus(status).value for status in statuses)]

        if runnable_type is not None:
            clauses.append("runnable_type = ?")
            values.append(runnable_type)

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at ASC, rowid ASC
                """,
                values,
            ).fetchall()
            return self._rows_to_jobs(conn, rows)

    # =========================================================================
    # Exception Log
    # =========================================================================

    def record_exception(self, owner_id: str, exception: JobException) -> JobException:
        """Append an exception record."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_exceptions
                (exception_id, owner_id, job_id, retry_number, status, dispatch_unit_id,
                 exception_type, message, stack_trace, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    exception.exception_id,
                    owner_id,
                    exception.job_id,
                    exception.retry_number,
                    exception.status.value,
                    exception.dispatch_unit_id,
                    exception.exception_type,
                    exception.message,
                    exception.stack_trace,
                    exception.created_at,
                ),
            )
        return exception

    def list_exceptions(self, owner_id: str, job_id: str) -> list[JobException]:
        """List exception records for a job, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM job_exceptions
                WHERE owner_id = ? AND job_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (owner_id, job_id),
            ).fetchall()

        return [
            JobException(
                exception_id=row["exception_id"],
                job_id=row["job_id"],
                retry_number=row["retry_number"],
                status=JobStatus(row["status"]),
                exception_type=row["exception_type"],
                message=row["message"],
                stack_trace=row["stack_trace"],
                dispatch_unit_id=row["dispatch_unit_id"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # =========================================================================
    # Admin Queries
    # =========================================================================

    def list_jobs(
        self,
        owner_id: str,
        statuses: Optional[Sequence[JobStatus]] = None,
        runnable_like: str = "",
        reference_like: str = "",
        order_by: str = "scheduled_run_time",
        descending: bool = False,
        offset: int = 0,
        limit: int = 200,
    ) -> list[Job]:
        """
        Filtered, sorted, paginated job listing.

        Search terms match as substrings. Scheduler jobs are included so
        they can be inspected like any other job.

        Raises:
            InvalidOperationError: If order_by is not a sortable column
        """
        if order_by not in SORTABLE_COLUMNS:
            raise InvalidOperationError(f"Cannot order jobs by '{order_by}'")

        where, values = self._listing_filter(owner_id, statuses, runnable_like, reference_like)
        direction = "DESC" if descending else "ASC"

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE {where}
                ORDER BY {order_by} {direction}, created_at ASC, rowid ASC
                LIMIT ? OFFSET ?
                """,
                [*values, limit, offset],
            ).fetchall()
            return self._rows_to_jobs(conn, rows)

    def count_jobs(
        self,
        owner_id: str,
        statuses: Optional[Sequence[JobStatus]] = None,
        runnable_like: str = "",
        reference_like: str = "",
    ) -> int:
        """Count the jobs list_jobs would return without pagination."""
        where, values = self._listing_filter(owner_id, statuses, runnable_like, reference_like)

        with self._connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS count FROM jobs WHERE {where}",
                values,
            ).fetchone()
        return row["count"]

    @staticmethod
    def _listing_filter(
        owner_id: str,
        statuses: Optional[Sequence[JobStatus]],
        runnable_like: str,
        reference_like: str,
    ) -> tuple[str, list]:
        clauses = ["owner_id = ?"]
        values: list = [owner_id]

        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            values.extend(JobStatus(status).value for status in statuses)
        if runnable_like:
            clauses.append("runnable_type LIKE ?")
            values.append(f"%{runnable_like}%")
        if reference_like:
            clauses.append("reference LIKE ?")
            values.append(f"%{reference_like}%")

        return " AND ".join(clauses), values

    def count_by_status(self, owner_id: str) -> dict[JobStatus, int]:
        """Count non-scheduler jobs per status; every status is present."""
        totals = {status: 0 for status in JobStatus}

        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS count FROM jobs
                WHERE owner_id = ? AND runnable_type != ?
                GROUP BY status
                """,
                (owner_id, SCHEDULER_TYPE),
            ).fetchall()

        for row in rows:
            totals[JobStatus(row["status"])] = row["count"]

        return totals
