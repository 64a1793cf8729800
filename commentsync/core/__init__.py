"""Core modules initialization"""

from .config import CommentSyncConfig, get_config, reset_config
from .container import ServiceContainer, get_container, reset_container
from .comment_transfer import CommentTransfer, TransferOptions
from .frame_extractor import FrameExtractor
from .frame_matcher import FrameMatcher, MatchThresholds, TargetPool, classify_match
from .frameio_client import FrameioClient, Session
from .job_store import JsonJobStore, JsonTokenStore, MemoryJobStore, MemoryTokenStore
from .metadata_probe import MetadataProbe
from .orchestrator import JobOrchestrator, process_job
from .perceptual_hash import FrameHasher, bit_distance, compute_dhash, similarity

__all__ = [
    "CommentSyncConfig",
    "get_config",
    "reset_config",
    "ServiceContainer",
    "get_container",
    "reset_container",
    "CommentTransfer",
    "TransferOptions",
    "FrameExtractor",
    "FrameMatcher",
    "MatchThresholds",
    "TargetPool",
    "classify_match",
    "FrameioClient",
    "Session",
    "JsonJobStore",
    "JsonTokenStore",
    "MemoryJobStore",
    "MemoryTokenStore",
    "MetadataProbe",
    "JobOrchestrator",
    "process_job",
    "FrameHasher",
    "bit_distance",
    "compute_dhash",
    "similarity",
]
