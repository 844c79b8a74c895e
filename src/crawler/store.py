from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy import DateTime, bindparam, func, or_, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crawler.db import Base, create_store_engine
from crawler.jobs import Job, JobStatus, PayloadError, decode_job
from crawler.models import JobRecord, WorkerHeartbeatRecord

DEFAULT_WORKER_ID = "worker-1"


class JobStoreError(RuntimeError):
    pass


class StoreUnavailableError(JobStoreError):
    pass


class JobDecodeError(JobStoreError):
    def __init__(self, job_id: int, reason: str) -> None:
        super().__init__(f"job_id={job_id} could not be decoded: {reason}")
        self.job_id = job_id
        self.reason = reason


class UnknownJobError(JobStoreError):
    def __init__(self, job_id: int) -> None:
        super().__init__(f"job_id={job_id} does not exist")
        self.job_id = job_id


class JobStateError(JobStoreError):
    pass


@dataclass(frozen=True)
class StoredJob:
    id: int
    kind: str
    status: str
    payload_json: str
    attempts: int
    max_attempts: int
    claimed_by: str | None
    available_at: datetime | None
    error: str | None
    result_json: dict[str, Any] | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime columns back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _snapshot(record: JobRecord) -> StoredJob:
    return StoredJob(
        id=record.id,
        kind=record.kind,
        status=record.status,
        payload_json=record.payload_json,
        attempts=record.attempts,
        max_attempts=record.max_attempts,
        claimed_by=record.claimed_by,
        available_at=record.available_at,
        error=record.error,
        result_json=record.result_json,
    )


class JobStore:
    """Durable FIFO of crawl jobs backed by a single ``jobs`` table.

    Rows are never deleted. ``pending`` rows are the work still to do,
    ``running`` rows are claimed by the worker named in ``claimed_by``,
    ``completed`` and ``failed`` rows are history. Each store instance acts
    as one worker and reports liveness to ``worker_heartbeats``.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_attempts: int = 3,
        worker_id: str = DEFAULT_WORKER_ID,
    ) -> None:
        self._engine = engine
        self._max_attempts = max(1, max_attempts)
        self._worker_id = worker_id

    @classmethod
    def open(
        cls,
        database_url: str,
        *,
        echo: bool = False,
        max_attempts: int = 3,
        worker_id: str = DEFAULT_WORKER_ID,
    ) -> JobStore:
        try:
            engine = create_store_engine(database_url, echo=echo)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"invalid job store url: {exc}") from exc

        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            location = engine.url.render_as_string(hide_password=True)
            engine.dispose()
            raise StoreUnavailableError(f"job store unavailable at {location}: {exc}") from exc

        return cls(engine, max_attempts=max_attempts, worker_id=worker_id)

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> JobStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _add_records(self, session: Session, jobs: Iterable[Job]) -> list[tuple[Job, JobRecord]]:
        now = _utcnow()
        added: list[tuple[Job, JobRecord]] = []
        for job in jobs:
            if job.id is not None:
                raise JobStateError(f"job_id={job.id} is already enqueued")
            record = JobRecord(
                kind=job.kind,
                status=JobStatus.PENDING.value,
                payload_json=job.payload(),
                attempts=0,
                max_attempts=self._max_attempts,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            added.append((job, record))
        session.flush()
        return added

    @staticmethod
    def _bind_added(added: list[tuple[Job, int]]) -> None:
        for job, job_id in added:
            job.bind(job_id, JobStatus.PENDING)

    def enqueue(self, job: Job) -> int:
        with Session(self._engine) as session, session.begin():
            added = [(item, record.id) for item, record in self._add_records(session, [job])]

        self._bind_added(added)
        return added[0][1]

    def is_empty(self) -> bool:
        with self._engine.connect() as connection:
            pending = connection.execute(
                select(func.count(JobRecord.id)).where(JobRecord.status == JobStatus.PENDING.value)
            ).scalar_one()
        return pending == 0

    def seconds_until_available(self) -> float | None:
        """Wait before some pending job becomes claimable; None when nothing is pending."""
        now = _utcnow()
        with self._engine.connect() as connection:
            pending, ready, earliest = connection.execute(
                select(
                    func.count(JobRecord.id),
                    func.count(JobRecord.id).filter(
                        or_(JobRecord.available_at.is_(None), JobRecord.available_at <= now)
                    ),
                    func.min(JobRecord.available_at),
                ).where(JobRecord.status == JobStatus.PENDING.value)
            ).one()
        if not pending:
            return None
        if ready or earliest is None:
            return 0.0
        return max(0.0, (_as_utc(earliest) - now).total_seconds())

    def claim_next_pending(self) -> Job | None:
        now = _utcnow()
        stmt = (
            select(JobRecord.id, JobRecord.kind, JobRecord.payload_json)
            .where(
                JobRecord.status == JobStatus.PENDING.value,
                or_(JobRecord.available_at.is_(None), JobRecord.available_at <= now),
            )
            .order_by(JobRecord.id.asc())
            .limit(1)
        )
        if self._engine.dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        decode_error: JobDecodeError | None = None
        job: Job | None = None

        with self._engine.begin() as connection:
            row = connection.execute(stmt).first()
            if row is None:
                return None

            try:
                job = decode_job(row.kind, row.payload_json)
            except PayloadError as exc:
                decode_error = JobDecodeError(row.id, str(exc))
                # Rows are never deleted; park it as failed with the reason.
                connection.execute(
                    update(JobRecord)
                    .where(JobRecord.id == row.id)
                    .values(
                        status=JobStatus.FAILED.value,
                        error=str(decode_error),
                        finished_at=now,
                        updated_at=now,
                    )
                )
            else:
                claimed = connection.execute(
                    update(JobRecord)
                    .where(JobRecord.id == row.id, JobRecord.status == JobStatus.PENDING.value)
                    .values(
                        status=JobStatus.RUNNING.value,
                        claimed_by=self._worker_id,
                        started_at=now,
                        updated_at=now,
                        finished_at=None,
                    )
                )
                if claimed.rowcount != 1:
                    return None

        if decode_error is not None:
            raise decode_error

        job.bind(row.id, JobStatus.RUNNING)
        return job

    def _load_for_update(self, session: Session, job: Job) -> JobRecord:
        if job.id is None:
            raise JobStateError(f"cannot update a job that was never enqueued (kind={job.kind})")
        record = session.get(JobRecord, job.id)
        if record is None:
            raise UnknownJobError(job.id)
        if record.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
            raise JobStateError(f"job_id={job.id} is already {record.status}")
        return record

    def complete_job(
        self,
        job: Job,
        *,
        derived: Sequence[Job] = (),
        result: dict[str, Any] | None = None,
    ) -> list[int]:
        """Mark ``job`` completed and enqueue the jobs its run produced.

        Both happen in one transaction, so a crash either leaves the job
        claimable with nothing derived, or completed with every derived job
        stored. Returns the ids assigned to ``derived``.
        """
        now = _utcnow()
        with Session(self._engine) as session, session.begin():
            record = self._load_for_update(session, job)
            record.status = JobStatus.COMPLETED.value
            record.result_json = result
            record.error = None
            record.finished_at = now
            record.updated_at = now
            added = [(item, rec.id) for item, rec in self._add_records(session, derived)]

        self._bind_added(added)
        job.bind(job.id, JobStatus.COMPLETED)
        return [job_id for _, job_id in added]

    def fail_job(
        self,
        job: Job,
        error: str,
        *,
        retry_delay: Callable[[int], float] | None = None,
    ) -> StoredJob:
        """Record a failed execution; requeue until ``max_attempts`` is spent.

        ``retry_delay`` maps the new attempt count to seconds the requeued row
        stays unclaimable, so other pending jobs are served first.
        """
        now = _utcnow()
        with Session(self._engine) as session, session.begin():
            record = self._load_for_update(session, job)
            record.attempts += 1
            requeue = record.attempts < record.max_attempts
            status = JobStatus.PENDING if requeue else JobStatus.FAILED
            record.status = status.value
            record.error = error
            record.updated_at = now
            if requeue:
                delay = retry_delay(record.attempts) if retry_delay is not None else 0.0
                record.available_at = now + timedelta(seconds=max(0.0, delay))
                record.claimed_by = None
                record.started_at = None
                record.finished_at = None
            else:
                record.finished_at = now
            session.flush()
            stored = _snapshot(record)

        job.bind(job.id, status)
        return stored

    def heartbeat(self, now: datetime | None = None) -> None:
        now = now or _utcnow()
        with self._engine.begin() as connection:
            connection.execute(
                text(
                    """
                    INSERT INTO worker_heartbeats (worker_id, last_heartbeat, updated_at)
                    VALUES (:worker_id, :last_heartbeat, CURRENT_TIMESTAMP)
                    ON CONFLICT(worker_id) DO UPDATE
                    SET last_heartbeat = EXCLUDED.last_heartbeat,
                        updated_at = CURRENT_TIMESTAMP
                    """
                ).bindparams(bindparam("last_heartbeat", type_=DateTime(timezone=True))),
                {
                    "worker_id": self._worker_id,
                    "last_heartbeat": now,
                },
            )

    def recover_interrupted(self, *, stale_after_seconds: float) -> int:
        """Requeue ``running`` rows whose worker is gone.

        A row counts as abandoned when it was claimed by this worker id (a
        previous run of this worker died mid-job), by no one, or by a worker
        whose last heartbeat is older than ``stale_after_seconds``. Rows held
        by workers with a fresh heartbeat are left alone.
        """
        now = _utcnow()
        cutoff = now - timedelta(seconds=stale_after_seconds)
        live_workers = select(WorkerHeartbeatRecord.worker_id).where(
            WorkerHeartbeatRecord.last_heartbeat >= cutoff,
            WorkerHeartbeatRecord.worker_id != self._worker_id,
        )
        with self._engine.begin() as connection:
            recovered = connection.execute(
                update(JobRecord)
                .where(
                    JobRecord.status == JobStatus.RUNNING.value,
                    or_(
                        JobRecord.claimed_by.is_(None),
                        JobRecord.claimed_by.not_in(live_workers),
                    ),
                )
                .values(
                    status=JobStatus.PENDING.value,
                    claimed_by=None,
                    started_at=None,
                    available_at=None,
                    updated_at=now,
                )
            )
        return recovered.rowcount

    def count_by_status(self) -> dict[str, int]:
        with self._engine.connect() as connection:
            rows = connection.execute(
                select(JobRecord.status, func.count(JobRecord.id)).group_by(JobRecord.status)
            ).all()
        return {status: int(count) for status, count in rows}

    def get(self, job_id: int) -> StoredJob | None:
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            return _snapshot(record) if record is not None else None

    def list_jobs(self, *, status: JobStatus | None = None) -> list[StoredJob]:
        with Session(self._engine) as session:
            stmt = select(JobRecord)
            if status is not None:
                stmt = stmt.where(JobRecord.status == status.value)
            records = session.scalars(stmt.order_by(JobRecord.id.asc())).all()
            return [_snapshot(record) for record in records]
