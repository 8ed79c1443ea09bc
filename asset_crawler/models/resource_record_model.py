from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .task_model import ResourceKind


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped-duplicate"


@dataclass
class ResourceRecord:
    """
    Outcome of one discovered reference. ``path`` is relative to the job's
    save root and only set for a successful download.
    """
    url: str
    kind: ResourceKind
    outcome: Outcome
    path: Optional[str] = None
    size: int = 0
    checksum: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    attempts: int = 0
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None

    @classmethod
    def duplicate(cls, url: str, kind: ResourceKind) -> "ResourceRecord":
        return cls(url=url, kind=kind, outcome=Outcome.SKIPPED_DUPLICATE)

    @classmethod
    def failure(
        cls,
        url: str,
        kind: ResourceKind,
        error_kind: str,
        error_detail: str = "",
        **fields: Any,
    ) -> "ResourceRecord":
        return cls(
            url=url,
            kind=kind,
            outcome=Outcome.FAILED,
            error_kind=error_kind,
            error_detail=(error_detail or error_kind)[:500],
            **fields,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["outcome"] = self.outcome.value
        return data
