from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TaskKind(str, Enum):
    PAGE = "page"
    RESOURCE = "resource"


class ResourceKind(str, Enum):
    """Resource type; the value doubles as the on-disk subdirectory."""

    IMAGE = "image"
    SCRIPT = "script"
    STYLE = "style"
    FONT = "font"
    MEDIA = "media"


@dataclass
class Task:
    kind: TaskKind
    url: str
    job_id: str
    resource_kind: Optional[ResourceKind] = None
    attempts: int = 0

    @classmethod
    def seed(cls, url: str, job_id: str) -> "Task":
        return cls(kind=TaskKind.PAGE, url=url, job_id=job_id)

    @classmethod
    def resource(cls, url: str, kind: ResourceKind, job_id: str) -> "Task":
        return cls(kind=TaskKind.RESOURCE, url=url, job_id=job_id, resource_kind=kind)
