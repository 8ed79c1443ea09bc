from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from asset_crawler.errors import InvalidInput
from .resource_record_model import Outcome, ResourceRecord

if TYPE_CHECKING:
    from asset_crawler.utils.config_loader import Config


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED)


class JobConfig(BaseModel):
    """Per-job knobs. Defaults mirror the service configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_concurrent: int = Field(default=5, ge=1, le=256)
    rate_limit_per_interval: int = Field(default=100, ge=1)
    rate_interval_seconds: float = Field(default=1.0, gt=0)
    timeout_millis: int = Field(default=30_000, ge=1)
    save_root: str = "/var/lib/crawler/downloads"
    max_retries: int = Field(default=3, ge=1, le=20)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    max_response_bytes: int = Field(default=50_000_000, ge=1)
    user_agent: str = "AssetCrawler/1.0"

    @classmethod
    def from_config(cls, config: "Config") -> "JobConfig":
        return cls(
            max_concurrent=config.max_concurrent,
            rate_limit_per_interval=config.rate_limit,
            rate_interval_seconds=config.rate_interval,
            timeout_millis=config.timeout,
            save_root=config.save_path,
            max_retries=config.max_retries,
            backoff_base_seconds=config.backoff_base,
            backoff_max_seconds=config.backoff_max,
            max_response_bytes=config.max_response_bytes,
            user_agent=config.crawler_user_agent,
        )

    def with_overrides(self, **overrides: Any) -> "JobConfig":
        """Return a validated copy; bad values raise ``InvalidInput``."""
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return JobConfig(**values)
        except ValidationError as exc:
            raise InvalidInput(f"Invalid job configuration: {exc}") from exc

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_millis / 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    status: JobStatus
    discovered: int
    downloaded: int
    failed: int
    skipped: int
    bytes_written: int


@dataclass(frozen=True)
class JobSnapshot:
    id: str
    seed_url: str
    status: JobStatus
    config: JobConfig
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    discovered: int
    downloaded: int
    failed: int
    skipped: int
    bytes_written: int
    error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["config"] = self.config.model_dump()
        for key in ("created_at", "started_at", "completed_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class CrawlJob:
    """Live job state. Only the orchestrator and its workers mutate it."""

    id: str
    seed_url: str
    config: JobConfig
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    discovered: int = 0
    downloaded: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_written: int = 0
    error: Optional[str] = None
    records: List[ResourceRecord] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def add_discovered(self, count: int = 1) -> None:
        if self.status.is_terminal:
            return
        self.discovered += count

    def add_record(self, record: ResourceRecord) -> None:
        # No awaits in here: counters and the record list move together.
        if self.status.is_terminal:
            return
        self.records.append(record)
        if record.outcome is Outcome.SUCCESS:
            self.downloaded += 1
            self.bytes_written += record.size
        elif record.outcome is Outcome.SKIPPED_DUPLICATE:
            self.skipped += 1
        else:
            self.failed += 1

    def transition(self, status: JobStatus, error: Optional[str] = None) -> bool:
        if self.status.is_terminal:
            return False
        self.status = status
        if status is JobStatus.RUNNING:
            self.started_at = utcnow()
        if status.is_terminal:
            self.completed_at = utcnow()
            if error:
                self.error = error
        return True

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            seed_url=self.seed_url,
            status=self.status,
            config=self.config,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            discovered=self.discovered,
            downloaded=self.downloaded,
            failed=self.failed,
            skipped=self.skipped,
            bytes_written=self.bytes_written,
            error=self.error,
        )

    def progress(self) -> ProgressEvent:
        return ProgressEvent(
            job_id=self.id,
            status=self.status,
            discovered=self.discovered,
            downloaded=self.downloaded,
            failed=self.failed,
            skipped=self.skipped,
            bytes_written=self.bytes_written,
        )
