"""Pattern-based extraction of links and fields from fetched pages.

Each intent (``category``, ``item``, ``next_page``, ``title``) maps to one
regular expression. When the pattern has a capture group, the first group is
the match value; otherwise the whole match is used. Field values are turned
into text with BeautifulSoup; links that do not resolve to an absolute http(s)
URL are dropped.
"""

from __future__ import annotations

import html
import re
from typing import Mapping, Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from crawler.fetcher import parse_http_url

CATEGORY = "category"
ITEM = "item"
NEXT_PAGE = "next_page"
TITLE = "title"

DEFAULT_PATTERNS: dict[str, str] = {
    CATEGORY: r'href="(https://www\.imdb\.com/search/title/?\?genres=[^"]*?)"',
    ITEM: r'href="(/title/[^"]*?/)\?ref_=adv_li_tt"',
    NEXT_PAGE: r"Next &#187;</a>",
    TITLE: r'<h1[^>]*itemprop="name"[^>]*>(.*?)</h1>',
}


class Extractor(Protocol):
    def extract_links(self, content: bytes, intent: str, *, base_url: str) -> list[str]: ...

    def extract_field(self, content: bytes, intent: str) -> str | None: ...


def _decode(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


class PatternExtractor:
    def __init__(self, patterns: Mapping[str, str] | None = None) -> None:
        merged = dict(DEFAULT_PATTERNS)
        if patterns:
            merged.update(patterns)
        self._patterns = {
            intent: re.compile(pattern, re.IGNORECASE | re.DOTALL)
            for intent, pattern in merged.items()
        }

    def _pattern(self, intent: str) -> re.Pattern[str]:
        try:
            return self._patterns[intent]
        except KeyError:
            raise ValueError(f"No extraction pattern configured for intent: {intent}") from None

    def extract_links(self, content: bytes, intent: str, *, base_url: str) -> list[str]:
        pattern = self._pattern(intent)
        links: list[str] = []
        seen: set[str] = set()
        for match in pattern.finditer(_decode(content)):
            value = match.group(1) if pattern.groups else match.group(0)
            link = urljoin(base_url, html.unescape(value.strip()))
            try:
                parse_http_url(link)
            except ValueError as exc:
                print(f"[crawler] skipping link intent={intent} error={exc}", flush=True)
                continue
            if link in seen:
                continue
            seen.add(link)
            links.append(link)
        return links

    def extract_field(self, content: bytes, intent: str) -> str | None:
        pattern = self._pattern(intent)
        match = pattern.search(_decode(content))
        if match is None:
            return None
        value = match.group(1) if pattern.groups else match.group(0)
        text = BeautifulSoup(value, "lxml").get_text(" ", strip=True)
        return text or None
