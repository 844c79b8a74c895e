from dataclasses import dataclass
from functools import lru_cache
import os


DEFAULT_USER_AGENT = "crawl-queue/0.1"


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    seed_url: str
    fetch_timeout_seconds: float
    user_agent: str
    max_attempts: int
    retry_base_seconds: float
    retry_max_seconds: float
    worker_id: str
    worker_stale_seconds: float


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("CRAWLER_DATABASE_URL", "sqlite+pysqlite:///crawl_jobs.db"),
        db_echo=_to_bool(os.getenv("CRAWLER_DB_ECHO"), default=False),
        seed_url=os.getenv("CRAWLER_SEED_URL", "https://www.imdb.com/feature/genre/"),
        fetch_timeout_seconds=_to_float(
            os.getenv("CRAWLER_FETCH_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        user_agent=os.getenv("CRAWLER_USER_AGENT", DEFAULT_USER_AGENT),
        max_attempts=_to_int(os.getenv("JOB_MAX_ATTEMPTS"), default=3, minimum=1),
        retry_base_seconds=_to_float(
            os.getenv("CRAWLER_RETRY_BASE_SECONDS"), default=1.0, minimum=0.0
        ),
        retry_max_seconds=_to_float(
            os.getenv("CRAWLER_RETRY_MAX_SECONDS"), default=30.0, minimum=0.0
        ),
        worker_id=os.getenv("WORKER_ID", "worker-1"),
        worker_stale_seconds=_to_float(
            os.getenv("CRAWLER_WORKER_STALE_SECONDS"), default=300.0, minimum=1.0
        ),
    )
