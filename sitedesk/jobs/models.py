"""
Job Models

State, results and settings for background jobs.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field, PrivateAttr, computed_field


class JobType(str, Enum):
    IMPORT = "import"
    BULK_DELETE = "bulk-delete"


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (JobStatus.RUNNING, JobStatus.PAUSED)
TERMINAL_STATUSES = (JobStatus.CANCELLED, JobStatus.COMPLETED)


class ResultStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class BatchStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    MIXED = "mixed"

    @classmethod
    def aggregate(cls, succeeded: int, failed: int) -> 'BatchStatus':
        if failed == 0:
            return cls.SUCCESS
        if succeeded == 0:
            return cls.ERROR
        return cls.MIXED


class BatchOperation(str, Enum):
    MEMBER_DELETION = "Member Deletion"
    CONTACT_DELETION = "Contact Deletion"


class ItemResult(BaseModel):
    """Outcome of one work item."""
    item: str
    status: ResultStatus = ResultStatus.PENDING
    message: str = ""
    detail: Optional[dict] = None


class ContactResult(BaseModel):
    """Outcome of one contact deletion inside a batch."""
    email: Optional[str] = None
    contact_id: Optional[str] = None
    status: ResultStatus
    error: Optional[str] = None


class BatchLog(BaseModel):
    """Log entry for one stage of one batch."""
    batch: int
    type: BatchOperation
    status: BatchStatus
    details: str
    raw_error: Optional[str] = None
    contact_results: Optional[list[ContactResult]] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class ImportConfig(BaseModel):
    """Import job settings."""
    custom_subject: str = "Welcome to Our Community!"
    delay_seconds: float = Field(default=3, ge=0)
    poll_interval: float = Field(default=0.2, gt=0)


class BulkDeleteConfig(BaseModel):
    """Bulk delete job settings."""
    batch_size: int = Field(default=50, ge=1)
    settle_seconds: float = Field(default=5.0, ge=0)
    contact_delay_seconds: float = Field(default=0.2, ge=0)
    poll_interval: float = Field(default=0.2, gt=0)


class ElapsedTimer:
    """Running time that only accrues between start() and stop().

    On every start the origin is set back by the time already accrued,
    so elapsed() can be recomputed on demand from the clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._origin: Optional[float] = None
        self._accrued = 0.0

    @property
    def running(self) -> bool:
        return self._origin is not None

    def start(self) -> None:
        if self._origin is None:
            self._origin = self.clock() - self._accrued

    def stop(self) -> None:
        if self._origin is not None:
            self._accrued = self.clock() - self._origin
            self._origin = None

    def elapsed(self) -> float:
        if self._origin is None:
            return self._accrued
        return self.clock() - self._origin


class JobState(BaseModel):
    """Observable state of the job tracked for one site and job type."""
    key: str
    type: JobType
    status: JobStatus = JobStatus.IDLE
    progress: float = 0.0
    total: int = 0
    processed: int = 0
    countdown: int = 0
    message: str = ""
    results: list[ItemResult] = Field(default_factory=list)
    logs: list[BatchLog] = Field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    _timer: ElapsedTimer = PrivateAttr(default_factory=ElapsedTimer)

    def bind_clock(self, clock: Callable[[], float]) -> 'JobState':
        self._timer = ElapsedTimer(clock)
        return self

    @property
    def timer(self) -> ElapsedTimer:
        return self._timer

    @computed_field
    @property
    def elapsed_time(self) -> float:
        """Seconds spent running, excluding paused intervals."""
        return round(self._timer.elapsed(), 3)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES
