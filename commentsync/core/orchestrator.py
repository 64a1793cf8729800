"""
Job Orchestrator

Runs one comment-relocation job end to end:

    1. authenticate               (5%)
    2. build the target hash pool (20%)
    3. hash the source frames     (60%)
    4. match                      (80%)
    5. transfer                   (95%)
    6. finish                     (100%)

Any error before the job finishes marks it failed with the error message
recorded verbatim and its error_code ("auth_error" means re-authenticate).
Comments already created are not rolled back.
"""

import asyncio
from typing import Dict, List

from commentsync.core.comment_transfer import CommentTransfer, TransferOptions
from commentsync.core.config import CommentSyncConfig
from commentsync.core.exceptions import AuthError, JobNotFoundError, NoCommentsError
from commentsync.core.frame_extractor import FrameExtractor
from commentsync.core.frame_matcher import FrameMatcher, TargetPool
from commentsync.core.frameio_client import FrameioClient, Session
from commentsync.core.job_store import JobStore, TokenStore
from commentsync.core.metadata_probe import MetadataProbe
from commentsync.core.perceptual_hash import FrameHasher
from commentsync.models.frames import FrameHash, VideoMetadata
from commentsync.models.schemas import JobResult, JobState, ProcessingJob, utcnow


class JobOrchestrator:
    def __init__(
        self,
        config: CommentSyncConfig,
        store: JobStore,
        tokens: TokenStore,
        client: FrameioClient,
        probe: MetadataProbe,
        extractor: FrameExtractor,
        hasher: FrameHasher,
        matcher: FrameMatcher,
        transfer: CommentTransfer,
    ):
        self.config = config
        self.store = store
        self.tokens = tokens
        self.client = client
        self.probe = probe
        self.extractor = extractor
        self.hasher = hasher
        self.matcher = matcher
        self.transfer = transfer

    async def _update(self, job: ProcessingJob, progress: float, message: str, status: JobState = JobState.PROCESSING, **fields) -> None:
        job.status = status
        job.progress = max(job.progress, progress)
        job.message = message
        for name, value in fields.items():
            setattr(job, name, value)
        await asyncio.to_thread(self.store.save, job)
        print(f"[{job.id}] [{int(round(job.progress * 100))}%] {message}")

    # =========================================================================
    # PIPELINE STEPS
    # =========================================================================

    async def _authenticate(self, job: ProcessingJob) -> Session:
        session = await asyncio.to_thread(self.tokens.load, job.account_id)
        if session is None:
            raise AuthError(f"No Frame.io credentials for account {job.account_id}")
        fresh = await self.client.ensure_fresh(session)
        if fresh != session:
            await asyncio.to_thread(self.tokens.save, job.account_id, fresh)
        return fresh

    async def _build_target_pool(self, url: str, metadata: VideoMetadata) -> TargetPool:
        mode = self.config.target_pool_mode
        if mode == "keyframes":
            frames = await self.extractor.extract_keyframes(url, metadata)
            hashes = await self.hasher.hash_frames(frames)
        elif mode == "interval":
            frames = await self.extractor.extract_interval_frames(url, self.config.interval_frames, metadata.fps)
            hashes = await self.hasher.hash_frames(frames)
        else:
            hashes = await self.extractor.extract_and_hash_all(
                url, metadata.fps, self.hasher, self.config.decimation_factor,
            )
        return TargetPool(hashes, metadata.fps)

    async def _hash_source_frames(self, url: str, frame_numbers: List[int], metadata: VideoMetadata) -> Dict[int, FrameHash]:
        if not frame_numbers:
            return {}
        if len(frame_numbers) <= self.config.chunk_threshold:
            frames = await self.extractor.extract_frames_with_seeking(
                url, frame_numbers, metadata.fps, concurrency=self.config.extraction_concurrency,
            )
        else:
            frames = await self.extractor.extract_frames_at_positions(url, frame_numbers, metadata.fps)
        hashes = await self.hasher.hash_frames(frames)
        return {h.frame_number: h for h in hashes}

    async def _densify_pool(
        self,
        pool: TargetPool,
        url: str,
        metadata: VideoMetadata,
        source_hashes: Dict[int, FrameHash],
    ) -> TargetPool:
        """Add every target frame around each coarse candidate of a sparse pool."""
        timestamps = set()
        for source in source_hashes.values():
            coarse = self.matcher.coarse_match(source.bits, pool)
            timestamps.update(c.timestamp for c in coarse.candidates)
        frames = await self.extractor.extract_refinement_frames(
            url,
            sorted(timestamps),
            metadata.fps,
            window_seconds=self.config.refinement_window_seconds,
            concurrency=self.config.extraction_concurrency,
        )
        return pool.merged_with(await self.hasher.hash_frames(frames))

    def _neighbor_fetcher(self, url: str, metadata: VideoMetadata):
        async def fetch(frame_numbers: List[int]) -> Dict[int, FrameHash]:
            frames = await self.extractor.extract_frames_with_seeking(
                url, frame_numbers, metadata.fps, concurrency=self.config.refinement_concurrency,
            )
            return {h.frame_number: h for h in await self.hasher.hash_frames(frames)}
        return fetch

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self, job_id: str) -> JobResult:
        """
        Process a pending job to completion.

        Raises:
            JobNotFoundError: no job with this id (nothing is persisted)
        """
        job = await asyncio.to_thread(self.store.load, job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.status != JobState.PENDING:
            return JobResult(success=False, message=f"Job {job_id} is {job.status.value}, not pending")

        print("=" * 60)
        print(f"🚀 Processing job {job.id}")
        print(f"   Account: {job.account_id}")
        print(f"   Source: {job.source_file_id} → Target: {job.target_file_id}")
        print("=" * 60)

        matcher_skips = 0
        try:
            await self._update(job, 0.05, "Authenticating with Frame.io...")
            session = await self._authenticate(job)

            source_url = await self.client.resolve_proxy_url(session, job.account_id, job.source_file_id, "Source")
            target_url = await self.client.resolve_proxy_url(session, job.account_id, job.target_file_id, "Target")
            comments = await self.client.list_comments(session, job.account_id, job.source_file_id)
            if not comments:
                raise NoCommentsError("No comments found on source file")
            print(f"✓ Found {len(comments)} comments on source file")

            await self._update(job, 0.20, "Processing target video...")
            target_meta = await self.probe.probe(target_url)
            pool = await self._build_target_pool(target_url, target_meta)

            await self._update(job, 0.60, f"Extracting {len(comments)} source frames...")
            source_meta = await self.probe.probe(source_url)
            wanted = sorted({c.frame_number for c in comments if 0 <= c.frame_number < source_meta.frame_count})
            source_hashes = await self._hash_source_frames(source_url, wanted, source_meta)

            await self._update(job, 0.80, "Matching frames...")
            if self.config.target_pool_mode != "full" and source_hashes:
                pool = await self._densify_pool(pool, target_url, target_meta, source_hashes)
            report = await self.matcher.match(
                comments,
                source_hashes,
                pool,
                self._neighbor_fetcher(source_url, source_meta),
                source_meta.fps,
                source_meta.frame_count,
            )
            matcher_skips = len(report.skipped)

            await self._update(job, 0.95, f"Transferring {len(report.matches)} comments...",
                               matches_found=len(report.matches))
            floor = self.config.floor_for(job.sensitivity)
            print(f"🎯 Similarity threshold: {floor * 100:.0f}% ({job.sensitivity} sensitivity)")
            result = await self.transfer.transfer(
                session,
                job.account_id,
                job.target_file_id,
                report.matches,
                TransferOptions(min_similarity=floor, add_prefix=self.config.add_transfer_prefix),
            )
            if result.session is not None and result.session != session:
                await asyncio.to_thread(self.tokens.save, job.account_id, result.session)

        except Exception as e:
            error_message = str(e)
            error_code = getattr(e, "error_code", "internal_error")
            print(f"\n✗ JOB FAILED [{job.id}] ({error_code}): {error_message}\n")
            await self._update(job, 1.0, f"Error: {error_message}", status=JobState.FAILED,
                               error_message=error_message, error_code=error_code, completed_at=utcnow())
            return JobResult(success=False, message=f"Error: {error_message}", error_code=error_code)

        skipped = result.skipped + matcher_skips
        if result.success:
            message = f"✓ Transferred {result.transferred} of {len(report.matches)} comments successfully"
        else:
            message = f"⚠️ Transferred {result.transferred}, failed {result.failed}, skipped {skipped}"
        await self._update(
            job,
            1.0,
            message,
            status=JobState.COMPLETED if result.success else JobState.COMPLETED_WITH_ERRORS,
            comments_transferred=result.transferred,
            completed_at=utcnow(),
        )
        return JobResult(
            success=result.success,
            transferred=result.transferred,
            skipped=skipped,
            failed=result.failed,
            message=message,
        )


async def process_job(job_id: str, container=None) -> JobResult:
    """Run a job with services from the (global) service container."""
    if container is None:
        from commentsync.core.container import get_container
        container = get_container()
    return await container.get_orchestrator().run(job_id)
