"""Error taxonomy shared by the fetch / download pipeline and the API layer."""

from __future__ import annotations

from typing import Optional


class CrawlError(Exception):
    """Base class; ``kind`` is the name stored on records and returned by the API."""

    kind = "CrawlError"
    retryable = False
    attempts = 0

    def __init__(self, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(message or self.kind)
        self.status_code = status_code


class InvalidInput(CrawlError):
    kind = "InvalidInput"


class NotFound(CrawlError):
    kind = "NotFound"


class Timeout(CrawlError):
    kind = "Timeout"
    retryable = True


class ResourceTooLarge(CrawlError):
    kind = "ResourceTooLarge"


class NetworkTransient(CrawlError):
    kind = "NetworkTransient"
    retryable = True


class HTTPServerError(NetworkTransient):
    """5xx answer; retried like a connection failure."""

    kind = "HTTPServerError"


class HTTPClientError(CrawlError):
    kind = "HTTPClientError"


class InvalidPath(CrawlError):
    kind = "InvalidPath"


class Cancelled(CrawlError):
    kind = "Cancelled"


class StorageUnavailable(CrawlError):
    """The job's save directory cannot be used; fatal for the whole job."""

    kind = "StorageUnavailable"
