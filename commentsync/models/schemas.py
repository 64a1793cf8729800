"""Pydantic models for jobs and API responses"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


TERMINAL_STATES = {JobState.COMPLETED, JobState.COMPLETED_WITH_ERRORS, JobState.FAILED}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingJob(BaseModel):
    id: str
    account_id: str
    source_file_id: str
    target_file_id: str
    sensitivity: str = "medium"  # "high", "medium", "low"
    status: JobState = JobState.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    message: Optional[str] = None
    matches_found: int = 0
    comments_transferred: int = 0
    error_message: Optional[str] = None
    error_code: Optional[str] = None  # e.g. "auth_error": prompt re-authentication
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class JobResult(BaseModel):
    success: bool
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    message: str = ""
    error_code: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobState
    progress: int  # 0-100
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    matches_found: int = 0
    comments_transferred: int = 0
    done: bool = False

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            progress=int(round(job.progress * 100)),
            message=job.message,
            error=job.error_message,
            error_code=job.error_code,
            matches_found=job.matches_found,
            comments_transferred=job.comments_transferred,
            done=job.is_terminal,
        )
