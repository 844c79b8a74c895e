from __future__ import annotations

from typing import Protocol

import httpx

from crawler.config import DEFAULT_USER_AGENT


class FetchError(RuntimeError):
    pass


def parse_http_url(value: str) -> httpx.URL:
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise ValueError(f"invalid url {value!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"not an absolute http(s) url: {value!r}")
    return url


class Fetcher(Protocol):
    def fetch(self, url: str) -> bytes: ...


class HttpxFetcher:
    def __init__(self, *, timeout_seconds: float = 30.0, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent

    def fetch(self, url: str) -> bytes:
        try:
            response = httpx.get(
                url,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout_seconds,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"{url}: {exc}") from exc

        return response.content
