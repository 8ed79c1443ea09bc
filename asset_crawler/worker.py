from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from asset_crawler.errors import Cancelled, CrawlError
from asset_crawler.fetching.fetcher import Fetcher
from asset_crawler.fetching.rate_limiter import RateLimiter
from asset_crawler.models import CrawlJob, ResourceRecord, Task, TaskKind
from asset_crawler.monitoring.metrics_server import WORKERS_ACTIVE
from asset_crawler.parsing.resource_extractor import extract_resources
from asset_crawler.storage.dedup_registry import DedupRegistry
from asset_crawler.storage.download_manager import DownloadManager
from asset_crawler.storage.task_queue import JobTaskQueue
from asset_crawler.utils.filters import is_html_content_type


@dataclass
class JobRuntime:
    """Everything the workers of one job share. Built and torn down per job."""

    job: CrawlJob
    queue: JobTaskQueue
    registry: DedupRegistry
    rate_limiter: RateLimiter
    fetcher: Fetcher
    downloads: DownloadManager
    record: Callable[[ResourceRecord], None]
    log: object = logger
    seed_error: Optional[str] = None

    def discard(self, tasks: List[Task], reason: str = "job cancelled before the task started") -> None:
        """Record never-started resource tasks as cancelled so the counters still add up."""
        for task in tasks:
            if task.kind is TaskKind.RESOURCE:
                self.record(
                    ResourceRecord.failure(task.url, task.resource_kind, Cancelled.kind, reason)
                )


class Worker:
    def __init__(self, runtime: JobRuntime, worker_id: int):
        self.runtime = runtime
        self.worker_id = worker_id
        self.name = f"Worker-{worker_id}"
        self.log = runtime.log

    # --------------------------
    #  Seed page
    # --------------------------
    async def _process_page(self, task: Task) -> None:
        runtime = self.runtime
        job = runtime.job

        try:
            result = await runtime.fetcher.fetch(task.url)
        except Cancelled:
            self.log.info(f"[{self.name}] Seed page fetch cancelled: {task.url}")
            return
        except CrawlError as exc:
            runtime.seed_error = f"Seed page {task.url} failed: {exc.kind}: {exc}"
            self.log.error(f"[{self.name}] {runtime.seed_error}")
            return

        if not is_html_content_type(result.content_type):
            runtime.seed_error = f"Seed page {task.url} is not HTML ({result.content_type})"
            self.log.error(f"[{self.name}] {runtime.seed_error}")
            return

        extraction = extract_resources(result.content, result.final_url or task.url)

        # discovery, duplicate records and claims happen without a suspension
        # point; the enqueue below runs while this task still counts as in flight
        job.add_discovered(extraction.discovered)
        for ref in extraction.duplicates:
            runtime.record(ResourceRecord.duplicate(ref.url, ref.kind))

        new_tasks: List[Task] = []
        for ref in extraction.resources:
            if runtime.registry.try_claim(ref.url):
                new_tasks.append(Task.resource(ref.url, ref.kind, job.id))
            else:
                runtime.record(ResourceRecord.duplicate(ref.url, ref.kind))

        accepted = await runtime.queue.put_many(new_tasks)
        if accepted < len(new_tasks):
            runtime.discard(new_tasks)

        self.log.info(
            f"[{self.name}] Parsed seed page {task.url} ({result.size} bytes): "
            f"{extraction.discovered} references, {len(new_tasks)} queued"
        )

    # --------------------------
    #  Resource download
    # --------------------------
    async def _process_resource(self, task: Task) -> None:
        runtime = self.runtime
        record = await runtime.downloads.download(task.url, task.resource_kind)
        task.attempts = record.attempts
        if runtime.job.cancelled and record.error_kind not in (None, Cancelled.kind):
            record.error_detail = f"cancelled after {record.error_kind}: {record.error_detail}"
            record.error_kind = Cancelled.kind
        runtime.record(record)

    # --------------------------
    #  Main processing
    # --------------------------
    async def process_task(self, task: Task) -> None:
        try:
            if task.kind is TaskKind.PAGE:
                await self._process_page(task)
            else:
                await self._process_resource(task)
        except Exception as exc:
            self.log.exception(f"[{self.name}] Unexpected error processing {task.url}")
            detail = f"{type(exc).__name__}: {exc}"
            if task.kind is TaskKind.PAGE:
                self.runtime.seed_error = f"Seed page {task.url} failed: {detail}"
            else:
                self.runtime.record(
                    ResourceRecord.failure(task.url, task.resource_kind, "Unexpected", detail)
                )

    # --------------------------
    #  Worker loop
    # --------------------------
    async def run(self) -> None:
        queue = self.runtime.queue
        job = self.runtime.job

        WORKERS_ACTIVE.inc()
        self.log.debug(f"{self.name} started.")
        try:
            while True:
                if job.cancelled:
                    self.log.debug(f"{self.name} stopping; job cancelled")
                    break

                task = await queue.get()
                if task is None:
                    break

                try:
                    await self.process_task(task)
                finally:
                    await queue.task_done()
        finally:
            WORKERS_ACTIVE.dec()
            self.log.debug(f"{self.name} finished.")
