"""
Job models for bulk rewrite and autoscore runs.

A job applies one rewrite target (or autoscoring) to a worklist of records
with bounded concurrency. Progress counters are updated after every unit.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from .rewrite_target import RewriteTarget

AUTOSCORE_MODE = "autoscore"

JobMode = Union[RewriteTarget, str]


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)


@dataclass
class JobConfig:
    """
    Tunables for one job.

    Attributes:
        concurrency: Number of parallel workers (>= 1)
        pace_ms: Sleep after each unit while work remains (>= 0)
        max_retries: Extra attempts after a transport failure (>= 0)
        retry_delay_ms: Wait between attempts (>= 0)
        split_field_requests: Use two sequential calls for "both" targets
        force: Autoscore records that already have a score
    """

    concurrency: int = 1
    pace_ms: int = 500
    max_retries: int = 2
    retry_delay_ms: int = 2000
    split_field_requests: bool = False
    force: bool = False


@dataclass
class JobProgress:
    """Snapshot of a job's counters."""

    completed: int = 0
    total: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.completed / self.total * 100


@dataclass
class JobEvent:
    """One entry of a job's trace log."""

    kind: str
    message: str
    item_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class JobSummary:
    """
    Report returned by JobHandle.wait() and kept in the job history.

    item_ids, config and message_index are the inputs the job was started
    with, so a finished job can be rerun as is.
    """

    job_id: str
    mode: str
    status: JobStatus
    progress: JobProgress
    events: List[JobEvent] = field(default_factory=list)
    item_ids: List[str] = field(default_factory=list)
    config: Optional[JobConfig] = None
    message_index: Optional[int] = None
    started_at: float = 0.0
    finished_at: Optional[float] = None

    def describe(self) -> str:
        p = self.progress
        return (
            f"{self.mode}: {p.completed}/{p.total} processed, "
            f"{p.updated} updated, {p.skipped} skipped, {p.errors} errors "
            f"({self.status.value})"
        )


def mode_name(mode: JobMode) -> str:
    return mode.value if isinstance(mode, RewriteTarget) else str(mode)
