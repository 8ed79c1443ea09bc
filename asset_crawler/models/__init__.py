from .job_model import CrawlJob, JobConfig, JobSnapshot, JobStatus, ProgressEvent
from .task_model import ResourceKind, Task, TaskKind
from .resource_record_model import Outcome, ResourceRecord

__all__ = [
    "CrawlJob",
    "JobConfig",
    "JobSnapshot",
    "JobStatus",
    "ProgressEvent",
    "ResourceKind",
    "Task",
    "TaskKind",
    "Outcome",
    "ResourceRecord",
]
