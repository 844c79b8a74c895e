from collections.abc import Iterator
from pathlib import Path

import pytest

from crawler.config import get_settings
from crawler.jobs import ListingJob
from crawler.store import JobStore


class FakeFetcher:
    """Serves canned pages; unknown URLs raise like a failed request."""

    def __init__(self, pages: dict[str, str], *, failures: dict[str, int] | None = None) -> None:
        self._pages = pages
        self._failures = dict(failures or {})
        self.calls: list[str] = []

    def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        remaining = self._failures.get(url, 0)
        if remaining:
            self._failures[url] = remaining - 1
            raise RuntimeError(f"simulated outage for {url}")
        if url not in self._pages:
            raise RuntimeError(f"no page for {url}")
        return self._pages[url].encode("utf-8")


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'crawl-jobs.db'}"


@pytest.fixture
def store(database_url: str) -> Iterator[JobStore]:
    job_store = JobStore.open(database_url, max_attempts=2)
    yield job_store
    job_store.close()


SEED_URL = "https://www.imdb.com/feature/genre/"


def category_url(genre: str) -> str:
    return f"https://www.imdb.com/search/title/?genres={genre}"


def seed_page(genres: list[str]) -> str:
    links = "\n".join(f'<a href="{category_url(genre)}">{genre}</a>' for genre in genres)
    return f"<html><body>{links}</body></html>"


def listing_page(movie_ids: list[str], *, has_next: bool) -> str:
    items = "\n".join(
        f'<a href="/title/{movie_id}/?ref_=adv_li_tt">{movie_id}</a>' for movie_id in movie_ids
    )
    pager = '<a href="?page=next" class="next-page">Next &#187;</a>' if has_next else ""
    return f"<html><body>{items}{pager}</body></html>"


def detail_page(title: str) -> str:
    return f'<html><body><h1 itemprop="name" class="">{title}</h1></body></html>'


def movie_url(movie_id: str) -> str:
    return f"https://www.imdb.com/title/{movie_id}/"


def build_site() -> dict[str, str]:
    """Two genres: drama spans two listing pages, comedy one; tt2 appears in both."""
    pages = {
        SEED_URL: seed_page(["drama", "comedy"]),
        ListingJob(url=category_url("drama"), page=1).target_url: listing_page(
            ["tt1", "tt2"], has_next=True
        ),
        ListingJob(url=category_url("drama"), page=2).target_url: listing_page(
            ["tt3"], has_next=False
        ),
        ListingJob(url=category_url("comedy"), page=1).target_url: listing_page(
            ["tt2", "tt4"], has_next=False
        ),
    }
    for movie_id in ["tt1", "tt2", "tt3", "tt4"]:
        pages[movie_url(movie_id)] = detail_page(f"Movie {movie_id}")
    return pages
