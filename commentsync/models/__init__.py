"""Models package initialization"""

from .frames import (
    ConfidenceTier,
    ExtractedFrame,
    FrameHash,
    MatchResult,
    SkippedComment,
    SourceComment,
    TransferOutcome,
    TransferResult,
    VideoMetadata,
)
from .schemas import JobResult, JobState, JobStatusResponse, ProcessingJob

__all__ = [
    "ConfidenceTier",
    "ExtractedFrame",
    "FrameHash",
    "MatchResult",
    "SkippedComment",
    "SourceComment",
    "TransferOutcome",
    "TransferResult",
    "VideoMetadata",
    "JobResult",
    "JobState",
    "JobStatusResponse",
    "ProcessingJob",
]
