import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

import httpx
from loguru import logger

from asset_crawler.errors import InvalidInput, NotFound, StorageUnavailable
from asset_crawler.fetching.fetcher import Fetcher
from asset_crawler.fetching.rate_limiter import RateLimiter
from asset_crawler.models import (
    CrawlJob,
    JobConfig,
    JobSnapshot,
    JobStatus,
    Outcome,
    ProgressEvent,
    ResourceRecord,
    Task,
)
from asset_crawler.monitoring.metrics_server import (
    BYTES_WRITTEN,
    JOBS_FINISHED,
    RESOURCES_RECORDED,
)
from asset_crawler.storage.dedup_registry import DedupRegistry
from asset_crawler.storage.download_manager import DownloadManager, prepare_job_dir
from asset_crawler.storage.task_queue import JobTaskQueue
from asset_crawler.utils.logger import job_logger
from asset_crawler.utils.url_utils import is_http_url
from asset_crawler.worker import JobRuntime, Worker

ProgressListener = Callable[[ProgressEvent], None]


def validate_seed_url(seed_url: Any) -> str:
    if not isinstance(seed_url, str) or not seed_url.strip():
        raise InvalidInput("A seed URL is required")
    seed_url = seed_url.strip()
    if not is_http_url(seed_url):
        raise InvalidInput(f"Seed URL must be an absolute http(s) URL: {seed_url!r}")
    return seed_url


class JobOrchestrator:
    """
    Owns every crawl job of the process.

    ``submit`` validates and registers a job and starts its runner task. The
    runner prepares ``save_root/<job_id>``, seeds the job's queue with the
    page task and runs exactly ``max_concurrent`` workers until the queue runs
    dry or the job is cancelled. Callers only ever see snapshots. Only the
    newest ``job_retention`` finished jobs are kept.
    """

    def __init__(
        self,
        defaults: Optional[JobConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        job_retention: int = 1000,
    ) -> None:
        if job_retention < 1:
            raise ValueError("job_retention must be >= 1")
        self.defaults = defaults or JobConfig()
        self.transport = transport
        self.job_retention = job_retention
        self._jobs: Dict[str, CrawlJob] = {}
        self._runners: Dict[str, asyncio.Task] = {}
        self._runtimes: Dict[str, JobRuntime] = {}
        self._listeners: List[ProgressListener] = []

    # -------------------------------------------------------
    # Public API
    # -------------------------------------------------------

    async def submit(
        self,
        seed_url: str,
        config: Union[JobConfig, Mapping[str, Any], None] = None,
    ) -> str:
        seed_url = validate_seed_url(seed_url)
        if config is None:
            job_config = self.defaults
        elif isinstance(config, JobConfig):
            job_config = config
        else:
            job_config = self.defaults.with_overrides(**dict(config))

        job = CrawlJob(id=uuid4().hex, seed_url=seed_url, config=job_config)
        self._jobs[job.id] = job
        runner = asyncio.create_task(self._run_job(job), name=f"crawl-job-{job.id}")
        runner.add_done_callback(lambda _task, job_id=job.id: self._runners.pop(job_id, None))
        self._runners[job.id] = runner
        job_logger(job.id).info(
            f"Submitted job for {seed_url} (workers={job_config.max_concurrent}, "
            f"rate={job_config.rate_limit_per_interval}/{job_config.rate_interval_seconds:g}s)"
        )
        return job.id

    def status(self, job_id: str) -> JobSnapshot:
        return self._get(job_id).snapshot()

    def records(self, job_id: str) -> List[ResourceRecord]:
        return list(self._get(job_id).records)

    def jobs(self) -> List[JobSnapshot]:
        return [job.snapshot() for job in self._jobs.values()]

    async def cancel(self, job_id: str) -> None:
        job = self._get(job_id)
        if job.status.is_terminal or job.cancelled:
            return

        job_logger(job_id).info("Cancellation requested")
        job.cancel_event.set()

        runtime = self._runtimes.get(job_id)
        if runtime is not None:
            leftover = await runtime.queue.close()
            runtime.discard(leftover)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobSnapshot:
        job = self._get(job_id)
        runner = self._runners.get(job_id)
        if runner is not None and not runner.done():
            await asyncio.wait_for(asyncio.shield(runner), timeout)
        return job.snapshot()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a progress listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def shutdown(self) -> None:
        for job_id, job in list(self._jobs.items()):
            if not job.status.is_terminal:
                await self.cancel(job_id)
        runners = [runner for runner in self._runners.values() if not runner.done()]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    # -------------------------------------------------------
    # Job runner
    # -------------------------------------------------------

    def _get(self, job_id: str) -> CrawlJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Unknown job {job_id!r}")
        return job

    def _build_runtime(self, job: CrawlJob, client: httpx.AsyncClient, log) -> JobRuntime:
        config = job.config
        rate_limiter = RateLimiter(
            config.rate_limit_per_interval,
            config.rate_interval_seconds,
            cancel_event=job.cancel_event,
        )
        fetcher = Fetcher.from_config(
            client, rate_limiter, config, cancel_event=job.cancel_event, log=log
        )
        return JobRuntime(
            job=job,
            queue=JobTaskQueue(),
            registry=DedupRegistry(),
            rate_limiter=rate_limiter,
            fetcher=fetcher,
            downloads=DownloadManager(fetcher, Path(config.save_root), job.id, log=log),
            record=lambda record: self._record(job, record),
            log=log,
        )

    async def _run_job(self, job: CrawlJob) -> None:
        log = job_logger(job.id)

        if job.cancelled:
            self._finish(job, JobStatus.CANCELLED)
            return

        try:
            prepare_job_dir(Path(job.config.save_root), job.id)
        except StorageUnavailable as exc:
            self._finish(job, JobStatus.FAILED, f"{exc.kind}: {exc}")
            return

        job.transition(JobStatus.RUNNING)
        self._emit(job)

        runtime: Optional[JobRuntime] = None
        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                follow_redirects=True,
                timeout=httpx.Timeout(job.config.timeout_seconds),
            ) as client:
                runtime = self._build_runtime(job, client, log)
                self._runtimes[job.id] = runtime
                await runtime.queue.put(Task.seed(job.seed_url, job.id))

                workers = [
                    asyncio.create_task(Worker(runtime, i).run(), name=f"{job.id}-worker-{i}")
                    for i in range(job.config.max_concurrent)
                ]
                try:
                    await asyncio.gather(*workers)
                except asyncio.CancelledError:
                    job.cancel_event.set()
                    for worker in workers:
                        worker.cancel()
                    await asyncio.gather(*workers, return_exceptions=True)
                    self._finish(job, JobStatus.CANCELLED)
                    raise

                leftover = await runtime.queue.close()
                runtime.discard(leftover)
        except Exception as exc:
            log.exception("Job runner crashed")
            self._finish(job, JobStatus.FAILED, f"Unexpected: {type(exc).__name__}: {exc}")
            return
        finally:
            self._runtimes.pop(job.id, None)

        if job.cancelled:
            self._finish(job, JobStatus.CANCELLED)
        elif runtime.seed_error:
            self._finish(job, JobStatus.FAILED, runtime.seed_error)
        else:
            self._finish(job, JobStatus.COMPLETED)

    # -------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------

    def _record(self, job: CrawlJob, record: ResourceRecord) -> None:
        if job.status.is_terminal:
            return
        job.add_record(record)
        RESOURCES_RECORDED.labels(kind=record.kind.value, outcome=record.outcome.value).inc()
        if record.outcome is Outcome.SUCCESS:
            BYTES_WRITTEN.inc(record.size)
        self._emit(job)

    def _finish(self, job: CrawlJob, status: JobStatus, error: Optional[str] = None) -> None:
        if not job.transition(status, error):
            return
        JOBS_FINISHED.labels(status=status.value).inc()
        self._prune_finished()
        log = job_logger(job.id)
        summary = (
            f"Job {status.value}: discovered={job.discovered} downloaded={job.downloaded} "
            f"failed={job.failed} skipped={job.skipped} bytes={job.bytes_written}"
        )
        if error:
            log.error(f"{summary} ({error})")
        else:
            log.info(summary)
        self._emit(job)

    def _prune_finished(self) -> None:
        """Forget the oldest terminal jobs beyond ``job_retention``."""
        finished = [job_id for job_id, job in self._jobs.items() if job.status.is_terminal]
        for job_id in finished[: len(finished) - self.job_retention]:
            del self._jobs[job_id]

    def _emit(self, job: CrawlJob) -> None:
        event = job.progress()
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed")
