"""
Frame, hash and match records passed between pipeline stages.

First Principles:
- Frame numbers are authoritative wherever they exist
- Timestamps are derived (frame / fps) unless a mode only knows time
- Similarity is always derived from bit distance, never stored twice
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


HASH_BITS = 64
HEX_PATTERN = re.compile(r"[0-9a-fA-F]{16}")


@dataclass(frozen=True)
class VideoMetadata:
    fps: float
    duration_seconds: float
    frame_count: int
    width: int
    height: int


@dataclass
class ExtractedFrame:
    """One decoded image plus where it came from in the video."""
    image: bytes
    frame_number: Optional[int] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.frame_number is None and self.timestamp is None:
            raise ValueError("ExtractedFrame needs a frame_number or a timestamp")



@dataclass(frozen=True)
class FrameHash:
    """64-bit dHash fingerprint of one frame."""
    bits: int
    frame_number: Optional[int] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        if not 0 <= self.bits < (1 << HASH_BITS):
            raise ValueError(f"hash out of 64-bit range: {self.bits}")

    @property
    def hex(self) -> str:
        return format(self.bits, "016x")

    @classmethod
    def from_hex(cls, text: str, frame_number: Optional[int] = None,
                 timestamp: Optional[float] = None) -> "FrameHash":
        """Exactly 16 hex digits; no 0x prefix, sign or underscores."""
        if not HEX_PATTERN.fullmatch(text):
            raise ValueError(f"expected 16 hex characters, got {text!r}")
        return cls(int(text, 16), frame_number, timestamp)


@dataclass(frozen=True)
class SourceComment:
    id: str
    text: str
    frame_number: int


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class MatchResult:
    comment: SourceComment
    target_frame_number: int
    target_timestamp: float
    bit_distance: int
    confidence: ConfidenceTier
    reason: str = ""

    @property
    def similarity(self) -> float:
        return 1.0 - self.bit_distance / HASH_BITS


@dataclass(frozen=True)
class SkippedComment:
    comment: SourceComment
    reason: str


@dataclass
class TransferOutcome:
    comment: SourceComment
    match: Optional[MatchResult]
    transferred: bool
    failed: bool = False
    reason: str = ""
    created_comment_id: Optional[str] = None

    @property
    def status(self) -> str:
        if self.transferred:
            return "transferred"
        return "failed" if self.failed else "skipped"


@dataclass
class TransferResult:
    success: bool
    transferred: int
    skipped: int
    failed: int
    outcomes: List[TransferOutcome] = field(default_factory=list)
    session: Optional[object] = None
