"""Crawl jobs: one variant per crawl stage.

A job is persisted as its ``kind`` tag plus a JSON payload of its fields.
``decode_job`` rebuilds the right variant from those two columns through
``JOB_TYPES``, so nothing besides the stored row is needed to resume work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from crawler import extractor as intents
from crawler.extractor import Extractor
from crawler.fetcher import Fetcher, parse_http_url


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PayloadError(ValueError):
    pass


@dataclass(frozen=True)
class JobResult:
    jobs: list[Job] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class Job(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str]

    url: str = Field(min_length=1)

    _id: int | None = PrivateAttr(default=None)
    _status: JobStatus = PrivateAttr(default=JobStatus.PENDING)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        parse_http_url(value)
        return value

    @property
    def id(self) -> int | None:
        return self._id

    @property
    def status(self) -> JobStatus:
        return self._status

    def bind(self, job_id: int, status: JobStatus) -> None:
        if self._id is not None and self._id != job_id:
            raise ValueError(f"job already has id={self._id}; cannot rebind to {job_id}")
        self._id = job_id
        self._status = status

    @property
    def target_url(self) -> str:
        return self.url

    def payload(self) -> str:
        return self.model_dump_json()

    def execute(self, fetcher: Fetcher, extractor: Extractor) -> JobResult:
        content = fetcher.fetch(self.target_url)
        return self.parse(content, extractor)

    def parse(self, content: bytes, extractor: Extractor) -> JobResult:
        """Turn fetched content into derived jobs and result data; each variant overrides this."""
        raise NotImplementedError

    def describe(self) -> str:
        return f"kind={self.kind} url={self.target_url}"


class SeedJob(Job):
    kind: ClassVar[str] = "seed"

    def parse(self, content: bytes, extractor: Extractor) -> JobResult:
        categories = extractor.extract_links(content, intents.CATEGORY, base_url=self.target_url)
        return JobResult(
            jobs=[ListingJob(url=category) for category in categories],
            data={"categories": len(categories)},
        )


class ListingJob(Job):
    kind: ClassVar[str] = "listing"

    page: int = Field(default=1, ge=1)

    @property
    def target_url(self) -> str:
        return str(httpx.URL(self.url).copy_set_param("page", str(self.page)))

    def parse(self, content: bytes, extractor: Extractor) -> JobResult:
        items = extractor.extract_links(content, intents.ITEM, base_url=self.target_url)
        derived: list[Job] = [DetailJob(url=item) for item in items]

        has_next = extractor.extract_field(content, intents.NEXT_PAGE) is not None
        if has_next:
            derived.append(ListingJob(url=self.url, page=self.page + 1))

        return JobResult(
            jobs=derived,
            data={"page": self.page, "items": len(items), "has_next": has_next},
        )

    def describe(self) -> str:
        return f"{super().describe()} page={self.page}"


class DetailJob(Job):
    kind: ClassVar[str] = "detail"

    def parse(self, content: bytes, extractor: Extractor) -> JobResult:
        title = extractor.extract_field(content, intents.TITLE)
        return JobResult(data={"title": title})


JOB_TYPES: dict[str, type[Job]] = {
    job_type.kind: job_type for job_type in (SeedJob, ListingJob, DetailJob)
}


def decode_job(kind: str, payload_json: str) -> Job:
    job_type = JOB_TYPES.get(kind)
    if job_type is None:
        raise PayloadError(f"unknown job kind: {kind!r}")

    try:
        payload = json.loads(payload_json)
    except (TypeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PayloadError("payload must be a JSON object")

    try:
        return job_type.model_validate(payload)
    except ValidationError as exc:
        raise PayloadError(f"invalid {kind} payload: {exc}") from exc
