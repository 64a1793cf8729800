"""
CommentSync Configuration Module

First Principles:
- Single source of truth for all settings
- Environment variables override defaults
- Decoder binaries are resolved once here, then injected
- Matching thresholds are explicit numbers, never buried in code
"""

import os
import shutil
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _resolve_binary(env_name: str, binary: str) -> str:
    """Explicit env path, else whatever is on PATH, else the bare name."""
    return os.getenv(env_name) or shutil.which(binary) or binary


@dataclass
class CommentSyncConfig:
    """
    Centralized configuration for CommentSync.

    Usage:
        config = CommentSyncConfig.from_env()
        print(config.floor_for("high"))  # 0.85
    """

    # ==========================================================================
    # Frame.io API
    # ==========================================================================
    frameio_api_base_url: str = "https://api.frame.io/v4"
    frameio_token_url: str = "https://ims-na1.adobelogin.com/ims/token/v3"
    frameio_client_id: Optional[str] = None
    frameio_client_secret: Optional[str] = None
    frameio_access_token: Optional[str] = None
    frameio_refresh_token: Optional[str] = None
    frameio_token_expires_at: float = 0.0  # epoch seconds, 0 = unknown
    request_timeout_seconds: int = 60
    token_refresh_margin_seconds: int = 60
    require_version_stack: bool = True  # source and target must share a version stack

    # ==========================================================================
    # Decoder
    # ==========================================================================
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    frame_image_format: str = "jpeg"  # "jpeg" or "png"
    frame_scale_width: int = 320

    # ==========================================================================
    # Sensitivity (minimum similarity to transfer)
    # ==========================================================================
    similarity_floor_high: float = 0.85
    similarity_floor_medium: float = 0.70
    similarity_floor_low: float = 0.55
    default_sensitivity: str = "medium"

    # ==========================================================================
    # Extraction
    # ==========================================================================
    target_pool_mode: str = "full"  # "full", "keyframes", "interval"
    decimation_factor: int = 1  # 1 = every frame
    interval_frames: int = 12
    refinement_window_seconds: float = 0.5
    refinement_merge_gap_seconds: float = 3.0
    extraction_concurrency: int = 4
    refinement_concurrency: int = 8
    chunk_threshold: int = 100  # max frames per select-filter run
    hash_queue_size: int = 32
    hash_batch_size: int = 10

    # ==========================================================================
    # Matching (bit distances out of 64)
    # ==========================================================================
    strict_distance: int = 10
    loose_distance: int = 20
    tie_gap: int = 4
    distinct_candidate_seconds: float = 0.5
    max_candidates: int = 5
    neighbor_offsets: Tuple[int, ...] = (-5, -1, 0, 1, 5)

    # ==========================================================================
    # Transfer
    # ==========================================================================
    transfer_batch_size: int = 10
    transfer_batch_delay_seconds: float = 60.0  # platform rate limit
    transfer_min_similarity: float = 0.8
    add_transfer_prefix: bool = True

    # ==========================================================================
    # Directories / Server
    # ==========================================================================
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    cors_origins: Tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")

    @classmethod
    def from_env(cls) -> "CommentSyncConfig":
        """
        Create config from environment variables.

        Environment variable names are uppercase versions of field names.
        Example: chunk_threshold -> CHUNK_THRESHOLD
        """
        offsets = os.getenv("NEIGHBOR_OFFSETS")
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            # Frame.io
            frameio_api_base_url=os.getenv("FRAMEIO_API_BASE_URL", cls.frameio_api_base_url),
            frameio_token_url=os.getenv("FRAMEIO_TOKEN_URL", cls.frameio_token_url),
            frameio_client_id=os.getenv("FRAMEIO_CLIENT_ID"),
            frameio_client_secret=os.getenv("FRAMEIO_CLIENT_SECRET"),
            frameio_access_token=os.getenv("FRAMEIO_ACCESS_TOKEN"),
            frameio_refresh_token=os.getenv("FRAMEIO_REFRESH_TOKEN"),
            frameio_token_expires_at=float(os.getenv("FRAMEIO_TOKEN_EXPIRES_AT", cls.frameio_token_expires_at)),
            request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", cls.request_timeout_seconds)),
            token_refresh_margin_seconds=int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", cls.token_refresh_margin_seconds)),
            require_version_stack=_env_bool("REQUIRE_VERSION_STACK", cls.require_version_stack),

            # Decoder
            ffmpeg_path=_resolve_binary("FFMPEG_PATH", "ffmpeg"),
            ffprobe_path=_resolve_binary("FFPROBE_PATH", "ffprobe"),
            frame_image_format=os.getenv("FRAME_IMAGE_FORMAT", cls.frame_image_format).lower(),
            frame_scale_width=int(os.getenv("FRAME_SCALE_WIDTH", cls.frame_scale_width)),

            # Sensitivity
            similarity_floor_high=float(os.getenv("SIMILARITY_FLOOR_HIGH", cls.similarity_floor_high)),
            similarity_floor_medium=float(os.getenv("SIMILARITY_FLOOR_MEDIUM", cls.similarity_floor_medium)),
            similarity_floor_low=float(os.getenv("SIMILARITY_FLOOR_LOW", cls.similarity_floor_low)),
            default_sensitivity=os.getenv("DEFAULT_SENSITIVITY", cls.default_sensitivity).lower(),

            # Extraction
            target_pool_mode=os.getenv("TARGET_POOL_MODE", cls.target_pool_mode).lower(),
            decimation_factor=int(os.getenv("DECIMATION_FACTOR", cls.decimation_factor)),
            interval_frames=int(os.getenv("INTERVAL_FRAMES", cls.interval_frames)),
            refinement_window_seconds=float(os.getenv("REFINEMENT_WINDOW_SECONDS", cls.refinement_window_seconds)),
            refinement_merge_gap_seconds=float(os.getenv("REFINEMENT_MERGE_GAP_SECONDS", cls.refinement_merge_gap_seconds)),
            extraction_concurrency=int(os.getenv("EXTRACTION_CONCURRENCY", cls.extraction_concurrency)),
            refinement_concurrency=int(os.getenv("REFINEMENT_CONCURRENCY", cls.refinement_concurrency)),
            chunk_threshold=int(os.getenv("CHUNK_THRESHOLD", cls.chunk_threshold)),
            hash_queue_size=int(os.getenv("HASH_QUEUE_SIZE", cls.hash_queue_size)),
            hash_batch_size=int(os.getenv("HASH_BATCH_SIZE", cls.hash_batch_size)),

            # Matching
            strict_distance=int(os.getenv("STRICT_DISTANCE", cls.strict_distance)),
            loose_distance=int(os.getenv("LOOSE_DISTANCE", cls.loose_distance)),
            tie_gap=int(os.getenv("TIE_GAP", cls.tie_gap)),
            distinct_candidate_seconds=float(os.getenv("DISTINCT_CANDIDATE_SECONDS", cls.distinct_candidate_seconds)),
            max_candidates=int(os.getenv("MAX_CANDIDATES", cls.max_candidates)),
            neighbor_offsets=tuple(int(o) for o in offsets.split(",")) if offsets else cls.neighbor_offsets,

            # Transfer
            transfer_batch_size=int(os.getenv("TRANSFER_BATCH_SIZE", cls.transfer_batch_size)),
            transfer_batch_delay_seconds=float(os.getenv("TRANSFER_BATCH_DELAY_SECONDS", cls.transfer_batch_delay_seconds)),
            transfer_min_similarity=float(os.getenv("TRANSFER_MIN_SIMILARITY", cls.transfer_min_similarity)),
            add_transfer_prefix=_env_bool("ADD_TRANSFER_PREFIX", cls.add_transfer_prefix),

            # Directories / Server
            data_dir=Path(os.getenv("DATA_DIR", "./data")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()) if origins else cls.cors_origins,
        )

    def floor_for(self, sensitivity: Optional[str]) -> float:
        """Minimum similarity for a sensitivity tier (unknown tiers use the default)."""
        floors = {
            "high": self.similarity_floor_high,
            "medium": self.similarity_floor_medium,
            "low": self.similarity_floor_low,
        }
        key = (sensitivity or self.default_sensitivity).lower()
        return floors.get(key, floors.get(self.default_sensitivity, self.similarity_floor_medium))

    def validate(self) -> list:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.frameio_access_token and not self.frameio_refresh_token:
            issues.append("FRAMEIO_ACCESS_TOKEN / FRAMEIO_REFRESH_TOKEN not set")

        if self.frame_image_format not in ("jpeg", "png"):
            issues.append(f"FRAME_IMAGE_FORMAT must be jpeg or png, got {self.frame_image_format}")

        if self.target_pool_mode not in ("full", "keyframes", "interval"):
            issues.append(f"TARGET_POOL_MODE must be full, keyframes or interval, got {self.target_pool_mode}")

        if self.decimation_factor < 1:
            issues.append(f"DECIMATION_FACTOR must be >= 1, got {self.decimation_factor}")

        if self.interval_frames < 1:
            issues.append(f"INTERVAL_FRAMES must be >= 1, got {self.interval_frames}")

        if self.chunk_threshold < 1:
            issues.append(f"CHUNK_THRESHOLD must be >= 1, got {self.chunk_threshold}")

        if not 0 <= self.strict_distance <= self.loose_distance <= 64:
            issues.append(
                f"Need 0 <= STRICT_DISTANCE <= LOOSE_DISTANCE <= 64, got {self.strict_distance}/{self.loose_distance}"
            )

        for name in ("high", "medium", "low"):
            floor = getattr(self, f"similarity_floor_{name}")
            if floor < 0 or floor > 1:
                issues.append(f"SIMILARITY_FLOOR_{name.upper()} must be 0-1, got {floor}")

        if self.default_sensitivity not in ("high", "medium", "low"):
            issues.append(f"DEFAULT_SENSITIVITY must be high, medium or low, got {self.default_sensitivity}")

        if self.transfer_batch_size < 1:
            issues.append(f"TRANSFER_BATCH_SIZE must be >= 1, got {self.transfer_batch_size}")

        return issues

    def print_summary(self):
        """Print configuration summary for debugging."""
        print("\n📋 CommentSync Configuration:")
        print(f"   API: {self.frameio_api_base_url}")
        print(f"   FFmpeg: {self.ffmpeg_path} | FFprobe: {self.ffprobe_path}")
        print(f"   Target pool: {self.target_pool_mode} (decimation {self.decimation_factor})")
        print(f"   Distances: strict {self.strict_distance} / loose {self.loose_distance} / tie gap {self.tie_gap}")
        print(f"   Transfer: {self.transfer_batch_size} per batch, {self.transfer_batch_delay_seconds:.0f}s apart")
        print(f"   Data Dir: {self.data_dir}")


# =============================================================================
# GLOBAL CONFIG INSTANCE
# =============================================================================

_config: Optional[CommentSyncConfig] = None


def get_config() -> CommentSyncConfig:
    """Get the global configuration (creates from env if needed)."""
    global _config
    if _config is None:
        _config = CommentSyncConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None
