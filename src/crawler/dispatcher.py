from __future__ import annotations

from dataclasses import dataclass
from random import random
from time import sleep as _sleep
from typing import Callable

from crawler.extractor import Extractor
from crawler.fetcher import Fetcher
from crawler.jobs import Job, JobStatus, SeedJob
from crawler.store import JobStore


@dataclass
class DispatchSummary:
    completed: int = 0
    requeued: int = 0
    failed: int = 0
    enqueued: int = 0


def bootstrap(store: JobStore, seed_url: str) -> bool:
    """Seed an empty store with one SeedJob; leave a store with pending or running work alone."""
    if not store.is_empty():
        print("[crawler] pending jobs found; resuming previous crawl", flush=True)
        return False
    running = store.count_by_status().get(JobStatus.RUNNING.value, 0)
    if running:
        print(f"[crawler] {running} job(s) running on other workers; not reseeding", flush=True)
        return False

    job_id = store.enqueue(SeedJob(url=seed_url))
    print(f"[crawler] seeded job_id={job_id} url={seed_url}", flush=True)
    return True


class Dispatcher:
    def __init__(
        self,
        store: JobStore,
        fetcher: Fetcher,
        extractor: Extractor,
        *,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        sleep: Callable[[float], None] = _sleep,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._extractor = extractor
        self._retry_base_seconds = retry_base_seconds
        self._retry_max_seconds = retry_max_seconds
        self._sleep = sleep

    def _retry_delay(self, attempt: int) -> float:
        delay = min(self._retry_base_seconds * (2 ** max(0, attempt - 1)), self._retry_max_seconds)
        if delay <= 0:
            return 0.0
        return delay + random() * 0.2 * delay

    def _run_one(self, job: Job, summary: DispatchSummary) -> None:
        try:
            print(f"[crawler] job claimed job_id={job.id} {job.describe()}", flush=True)
            result = job.execute(self._fetcher, self._extractor)
        except Exception as exc:
            stored = self._store.fail_job(job, str(exc), retry_delay=self._retry_delay)
            attempts = f"{stored.attempts}/{stored.max_attempts}"
            if stored.status == JobStatus.FAILED.value:
                summary.failed += 1
                print(
                    f"[crawler] job failed job_id={job.id} attempts={attempts} error={exc}",
                    flush=True,
                )
                return

            summary.requeued += 1
            print(
                f"[crawler] job requeued job_id={job.id} attempts={attempts} "
                f"available_at={stored.available_at} error={exc}",
                flush=True,
            )
            return

        derived_ids = self._store.complete_job(job, derived=result.jobs, result=result.data)
        summary.completed += 1
        summary.enqueued += len(derived_ids)
        print(
            f"[crawler] job completed job_id={job.id} derived={len(derived_ids)} result={result.data}",
            flush=True,
        )

    def work(self) -> DispatchSummary:
        """Drain the store: claim, execute and complete jobs until none is pending.

        A job whose execution raises is recorded with ``fail_job`` and held back
        for a jittered exponential delay while other pending jobs run. The loop
        only sleeps when every pending job is still waiting out its delay.
        Store errors (decode failures, unknown ids, invalid status transitions)
        propagate and end the run.
        """
        summary = DispatchSummary()
        while not self._store.is_empty():
            self._store.heartbeat()
            job = self._store.claim_next_pending()
            if job is None:
                wait = self._store.seconds_until_available()
                if wait is None:
                    break
                if wait > 0:
                    self._sleep(wait)
                continue
            self._run_one(job, summary)
        return summary
