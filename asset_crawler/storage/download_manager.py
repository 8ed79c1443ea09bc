import asyncio
import hashlib
import os
import re
import threading
from pathlib import Path, PurePosixPath
from typing import Optional, Set
from urllib.parse import unquote, urlparse

import aiofiles
import aiofiles.os
from loguru import logger

from asset_crawler.errors import CrawlError, InvalidPath, StorageUnavailable
from asset_crawler.fetching.fetcher import Fetcher
from asset_crawler.models import Outcome, ResourceKind, ResourceRecord

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_FILENAME_LENGTH = 150
CHECKSUM_ALGORITHM = "sha256"


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name).strip()
    name = name or "index"
    if name.startswith("."):
        name = "_" + name[1:]
    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        ext = ext[:16]
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


def prepare_job_dir(save_root: Path, job_id: str) -> Path:
    """Create ``save_root/<job_id>``; any failure here is fatal for the job."""
    job_dir = Path(save_root) / job_id
    try:
        job_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageUnavailable(f"Cannot create {job_dir}: {exc}") from exc
    if not os.access(job_dir, os.W_OK | os.X_OK):
        raise StorageUnavailable(f"{job_dir} is not writable")
    return job_dir


def filename_for_url(url: str) -> str:
    path = unquote(urlparse(url).path)
    return sanitize_filename(PurePosixPath(path).name)


class PathAllocator:
    """
    Hands out ``<job_id>/<kind>/<filename>`` paths, never the same one twice.

    A taken name gets ``-1``, ``-2``, ... inserted before its extension.
    Comparison is case-insensitive so two resources cannot land on the same
    file on case-folding filesystems either.
    """

    def __init__(self, save_root: Path, job_id: str) -> None:
        self.save_root = Path(save_root).resolve()
        self.job_id = job_id
        self._taken: Set[str] = set()
        self._lock = threading.Lock()

    def allocate(self, url: str, kind: ResourceKind) -> str:
        name = filename_for_url(url)
        stem, ext = os.path.splitext(name)
        with self._lock:
            counter = 0
            candidate = name
            while self._key(kind, candidate) in self._taken:
                counter += 1
                candidate = f"{stem}-{counter}{ext}"
            relative = f"{self.job_id}/{kind.value}/{candidate}"
            self.check_inside_root(relative)
            self._taken.add(self._key(kind, candidate))
            return relative

    def check_inside_root(self, relative: str) -> Path:
        target = (self.save_root / relative).resolve()
        if not target.is_relative_to(self.save_root):
            raise InvalidPath(f"{relative!r} resolves outside {self.save_root}")
        return target

    @staticmethod
    def _key(kind: ResourceKind, name: str) -> str:
        return f"{kind.value}/{name.lower()}"


class FileSink:
    """
    Streams a body straight to its final path through aiofiles while hashing it.

    Used as an async context manager: the handle is always closed, and the
    file is removed whenever the block exits with an exception (cancellation
    included).
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.size = 0
        self._hash = hashlib.new(CHECKSUM_ALGORITHM)
        self._fh = None
        self._pending: Optional[asyncio.Future] = None

    async def __aenter__(self) -> "FileSink":
        self._fh = await aiofiles.open(self.path, "wb")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._fh is not None:
            await self._settle()
            await self._fh.close()
            self._fh = None
        if exc_type is not None and await aiofiles.os.path.exists(self.path):
            await aiofiles.os.remove(self.path)
        return False

    async def _settle(self) -> None:
        # a write abandoned by a cancelled attempt still runs in its worker thread
        if self._pending is not None:
            await asyncio.gather(self._pending, return_exceptions=True)
            self._pending = None

    async def reset(self) -> None:
        await self._settle()
        await self._fh.seek(0)
        await self._fh.truncate()
        self._hash = hashlib.new(CHECKSUM_ALGORITHM)
        self.size = 0

    async def write(self, chunk: bytes) -> None:
        self._pending = asyncio.ensure_future(self._fh.write(chunk))
        await asyncio.shield(self._pending)
        self._pending = None
        self._hash.update(chunk)
        self.size += len(chunk)

    @property
    def checksum(self) -> str:
        return self._hash.hexdigest()


class DownloadManager:
    def __init__(self, fetcher: Fetcher, save_root: Path, job_id: str, log=logger) -> None:
        self.fetcher = fetcher
        self.save_root = Path(save_root)
        self.allocator = PathAllocator(self.save_root, job_id)
        self.log = log

    async def download(self, url: str, kind: ResourceKind) -> ResourceRecord:
        """Fetch one resource to disk. Task-level failures come back as a failed record."""
        try:
            relative = self.allocator.allocate(url, kind)
        except InvalidPath as exc:
            self.log.warning(f"Refusing to store {url}: {exc}")
            return ResourceRecord.failure(url, kind, exc.kind, str(exc))

        target = self.save_root / relative
        sink: Optional[FileSink] = None
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with FileSink(target) as sink:
                result = await self.fetcher.fetch(url, sink)
        except CrawlError as exc:
            self.log.warning(f"Failed {url}: {exc.kind} ({exc})")
            return ResourceRecord.failure(
                url,
                kind,
                exc.kind,
                str(exc),
                status_code=exc.status_code,
                attempts=exc.attempts,
            )
        except OSError as exc:
            self.log.error(f"Cannot write {target} for {url}: {exc}")
            return ResourceRecord.failure(url, kind, InvalidPath.kind, f"{type(exc).__name__}: {exc}")

        self.log.debug(f"Downloaded {url} -> {relative} ({sink.size} bytes)")
        return ResourceRecord(
            url=url,
            kind=kind,
            outcome=Outcome.SUCCESS,
            path=relative,
            size=sink.size,
            checksum=sink.checksum,
            status_code=result.status_code,
            content_type=result.content_type or None,
            attempts=result.attempts,
        )
