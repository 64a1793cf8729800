"""
CommentSync Service Container - Dependency Injection

First Principles:
- Components receive collaborators, they never construct them
- Easy testing: register fakes before the first get_*()
- Every service is built from the one CommentSyncConfig
"""

from typing import List, Optional, Protocol, runtime_checkable

from commentsync.core.config import CommentSyncConfig, get_config
from commentsync.core.job_store import JobStore, TokenStore
from commentsync.models.frames import SourceComment, VideoMetadata


# =============================================================================
# ABSTRACT INTERFACES (Protocols)
# =============================================================================

@runtime_checkable
class ProbeProtocol(Protocol):
    """Interface for video metadata probes"""
    async def probe(self, url: str) -> VideoMetadata:
        ...


@runtime_checkable
class PlatformClientProtocol(Protocol):
    """Interface for the review platform (Frame.io) client"""
    async def ensure_fresh(self, session):
        ...

    async def resolve_proxy_url(self, session, account_id: str, file_id: str, label: str = "File") -> str:
        ...

    async def validate_version_stack(self, session, account_id: str, source_file_id: str, target_file_id: str) -> dict:
        ...

    async def list_comments(self, session, account_id: str, file_id: str) -> List[SourceComment]:
        ...

    async def create_comment(self, session, account_id: str, file_id: str, text: str, frame_number: int) -> str:
        ...


# =============================================================================
# SERVICE CONTAINER
# =============================================================================

class ServiceContainer:
    """
    Centralized service container for dependency injection.

    Usage:
        container = ServiceContainer()
        orchestrator = container.get_orchestrator()

    For testing:
        container = ServiceContainer(config)
        container.register_client(FakePlatformClient())
        container.register_job_store(MemoryJobStore())
    """

    def __init__(self, config: Optional[CommentSyncConfig] = None):
        self.config = config or get_config()
        self._client: Optional[PlatformClientProtocol] = None
        self._probe: Optional[ProbeProtocol] = None
        self._extractor = None
        self._job_store: Optional[JobStore] = None
        self._token_store: Optional[TokenStore] = None
        self._sleep = None

    # =========================================================================
    # REGISTRATION (for testing/swapping implementations)
    # =========================================================================

    def register_client(self, client: PlatformClientProtocol) -> None:
        """Register a custom platform client"""
        self._client = client

    def register_probe(self, probe: ProbeProtocol) -> None:
        """Register a custom metadata probe"""
        self._probe = probe

    def register_extractor(self, extractor) -> None:
        """Register a custom frame extractor"""
        self._extractor = extractor

    def register_job_store(self, store: JobStore) -> None:
        self._job_store = store

    def register_token_store(self, store: TokenStore) -> None:
        self._token_store = store

    def register_sleep(self, sleep) -> None:
        """Replace the delay between transfer batches"""
        self._sleep = sleep

    # =========================================================================
    # FACTORY METHODS (lazy initialization)
    # =========================================================================

    def get_client(self) -> PlatformClientProtocol:
        """Get or create the Frame.io client"""
        if self._client is None:
            from commentsync.core.frameio_client import FrameioClient
            self._client = FrameioClient(
                base_url=self.config.frameio_api_base_url,
                token_url=self.config.frameio_token_url,
                client_id=self.config.frameio_client_id,
                client_secret=self.config.frameio_client_secret,
                timeout=self.config.request_timeout_seconds,
                refresh_margin_seconds=self.config.token_refresh_margin_seconds,
            )
        return self._client

    def get_probe(self) -> ProbeProtocol:
        if self._probe is None:
            from commentsync.core.metadata_probe import MetadataProbe
            self._probe = MetadataProbe(self.config.ffprobe_path)
        return self._probe

    def get_extractor(self):
        if self._extractor is None:
            from commentsync.core.frame_extractor import FrameExtractor
            self._extractor = FrameExtractor(
                ffmpeg_path=self.config.ffmpeg_path,
                image_format=self.config.frame_image_format,
                scale_width=self.config.frame_scale_width,
                chunk_threshold=self.config.chunk_threshold,
                merge_gap_seconds=self.config.refinement_merge_gap_seconds,
                hash_queue_size=self.config.hash_queue_size,
                hash_batch_size=self.config.hash_batch_size,
            )
        return self._extractor

    def get_job_store(self) -> JobStore:
        if self._job_store is None:
            from commentsync.core.job_store import JsonJobStore
            self._job_store = JsonJobStore(self.config.data_dir / "jobs")
        return self._job_store

    def get_token_store(self) -> TokenStore:
        """Token store seeded with the session from the environment, if any"""
        if self._token_store is None:
            from commentsync.core.frameio_client import Session
            from commentsync.core.job_store import JsonTokenStore
            default = None
            if self.config.frameio_access_token or self.config.frameio_refresh_token:
                default = Session(
                    access_token=self.config.frameio_access_token or "",
                    refresh_token=self.config.frameio_refresh_token,
                    expires_at=self.config.frameio_token_expires_at,
                )
            self._token_store = JsonTokenStore(self.config.data_dir / "tokens.json", default=default)
        return self._token_store

    def get_matcher(self):
        from commentsync.core.frame_matcher import FrameMatcher, MatchThresholds
        return FrameMatcher(
            MatchThresholds(
                strict_distance=self.config.strict_distance,
                loose_distance=self.config.loose_distance,
                tie_gap=self.config.tie_gap,
                distinct_seconds=self.config.distinct_candidate_seconds,
                max_candidates=self.config.max_candidates,
            ),
            neighbor_offsets=self.config.neighbor_offsets,
        )

    def get_transfer(self):
        """Comment batcher; direct callers get TRANSFER_MIN_SIMILARITY as their floor"""
        from commentsync.core.comment_transfer import CommentTransfer, TransferOptions
        return CommentTransfer(
            self.get_client(),
            batch_size=self.config.transfer_batch_size,
            batch_delay_seconds=self.config.transfer_batch_delay_seconds,
            sleep=self._sleep,
            default_options=TransferOptions(
                min_similarity=self.config.transfer_min_similarity,
                add_prefix=self.config.add_transfer_prefix,
            ),
        )

    def get_orchestrator(self):
        """Build an orchestrator wired to this container's services"""
        from commentsync.core.orchestrator import JobOrchestrator
        from commentsync.core.perceptual_hash import FrameHasher

        return JobOrchestrator(
            config=self.config,
            store=self.get_job_store(),
            tokens=self.get_token_store(),
            client=self.get_client(),
            probe=self.get_probe(),
            extractor=self.get_extractor(),
            hasher=FrameHasher(concurrency=self.config.hash_batch_size),
            matcher=self.get_matcher(),
            transfer=self.get_transfer(),
        )


# =============================================================================
# GLOBAL CONTAINER INSTANCE
# =============================================================================

# Singleton container for the application
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get the global service container (creates if needed)"""
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """Reset the container (useful for testing)"""
    global _container
    _container = None
