import threading
from typing import Set

from asset_crawler.utils.url_utils import normalize_url


class DedupRegistry:
    """Job-scoped set of claimed resource URLs, keyed by their normalized form."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def try_claim(self, url: str) -> bool:
        """Record ``url`` and return True only if nobody claimed it before."""
        key = normalize_url(url)
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return normalize_url(url) in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
