from __future__ import annotations

import argparse
from dataclasses import replace
import sys

from crawler.config import Settings, get_settings
from crawler.dispatcher import DispatchSummary, Dispatcher, bootstrap
from crawler.extractor import Extractor, PatternExtractor
from crawler.fetcher import Fetcher, HttpxFetcher
from crawler.store import JobStore


def run_crawl(
    settings: Settings,
    *,
    fetcher: Fetcher | None = None,
    extractor: Extractor | None = None,
) -> DispatchSummary:
    if fetcher is None:
        fetcher = HttpxFetcher(
            timeout_seconds=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
        )
    if extractor is None:
        extractor = PatternExtractor()

    with JobStore.open(
        settings.database_url,
        echo=settings.db_echo,
        max_attempts=settings.max_attempts,
        worker_id=settings.worker_id,
    ) as store:
        store.heartbeat()
        recovered = store.recover_interrupted(stale_after_seconds=settings.worker_stale_seconds)
        if recovered:
            print(
                f"[crawler] requeued {recovered} interrupted job(s) worker_id={store.worker_id}",
                flush=True,
            )

        bootstrap(store, settings.seed_url)
        dispatcher = Dispatcher(
            store,
            fetcher,
            extractor,
            retry_base_seconds=settings.retry_base_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )
        summary = dispatcher.work()
        print(
            f"[crawler] queue drained completed={summary.completed} requeued={summary.requeued} "
            f"failed={summary.failed} enqueued={summary.enqueued} totals={store.count_by_status()}",
            flush=True,
        )
    return summary


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crawl-worker",
        description="Run the crawl job queue until no pending job remains",
    )
    parser.add_argument("--seed-url", default=None, help="Entry page to seed an empty queue with")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL of the job store")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    if args.seed_url is not None:
        settings = replace(settings, seed_url=args.seed_url)
    if args.database_url is not None:
        settings = replace(settings, database_url=args.database_url)

    try:
        run_crawl(settings)
    except Exception as exc:
        print(f"[crawler] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
