"""
Frame Extractor Module

Six ways of pulling frames out of a video with ffmpeg:
    1. seeking             - one decoder per frame (sparse requests)
    2. select filter       - one decoder per chunk of frame numbers
    3. interval            - every Nth frame
    4. keyframes           - natural I-frames (approximate timestamps)
    5. full + hash         - every (or every Dth) frame, hashed as it streams
    6. refinement windows  - dense frames around a set of timestamps

First Principles:
- Never write frames to disk: decode to an image pipe and split the stream
- Frame numbers are authoritative; timestamps are derived as frame / fps
- Nonzero decoder exit is fatal; there is no retry
"""

import asyncio
import math
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple

from commentsync.core.exceptions import ExtractionError
from commentsync.core.perceptual_hash import FrameHasher
from commentsync.core.stream_parser import ImageStreamParser
from commentsync.models.frames import ExtractedFrame, FrameHash, VideoMetadata


READ_SIZE = 64 * 1024
STDERR_TAIL = 2000

_END = object()


def merge_time_windows(
    timestamps: Sequence[float],
    window_seconds: float,
    merge_gap_seconds: float,
) -> List[Tuple[float, float]]:
    """
    Build [max(0, t - w), t + w] around each timestamp and merge windows
    whose gap to the current group's end is at most merge_gap_seconds.
    """
    ranges = sorted((max(0.0, t - window_seconds), t + window_seconds) for t in timestamps)
    groups: List[Tuple[float, float]] = []
    for start, end in ranges:
        if groups and start - groups[-1][1] <= merge_gap_seconds:
            groups[-1] = (groups[-1][0], max(groups[-1][1], end))
        else:
            groups.append((start, end))
    return groups


def build_select_filter(frame_numbers: Sequence[int]) -> str:
    terms = "+".join(f"eq(n\\,{n})" for n in frame_numbers)
    return f"select='{terms}'"


class FrameExtractor:
    """
    ffmpeg-backed frame extraction.

    Args:
        ffmpeg_path: decoder binary, resolved once by the config
        image_format: "jpeg" or "png" for the piped images
        scale_width: frames are downscaled to this width before piping
        chunk_threshold: max frame numbers per select-filter run
        merge_gap_seconds: refinement windows closer than this share a decoder run
        hash_queue_size: bound on frames waiting to be hashed in full mode
        hash_batch_size: frames hashed in parallel per drain step
        spawn: optional coroutine(args) -> process, for tests
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        image_format: str = "jpeg",
        scale_width: int = 320,
        chunk_threshold: int = 100,
        merge_gap_seconds: float = 3.0,
        hash_queue_size: int = 32,
        hash_batch_size: int = 10,
        spawn: Optional[Callable[[List[str]], Awaitable[object]]] = None,
    ):
        if image_format not in ("jpeg", "png"):
            raise ValueError(f"Unsupported image format: {image_format}")
        self.ffmpeg_path = ffmpeg_path
        self.image_format = image_format
        self.scale_width = scale_width
        self.chunk_threshold = max(1, chunk_threshold)
        self.merge_gap_seconds = merge_gap_seconds
        self.hash_queue_size = max(1, hash_queue_size)
        self.hash_batch_size = max(1, hash_batch_size)
        self._spawn = spawn or self._spawn_ffmpeg

    # =========================================================================
    # DECODER PLUMBING
    # =========================================================================

    async def _spawn_ffmpeg(self, args: List[str]):
        return await asyncio.create_subprocess_exec(
            self.ffmpeg_path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    def _scale(self) -> str:
        return f"scale={self.scale_width}:-2"

    def _pipe_args(self, video_filter: str) -> List[str]:
        if self.image_format == "jpeg":
            codec = ["-c:v", "mjpeg", "-q:v", "5"]
        else:
            codec = ["-c:v", "png"]
        return ["-vf", video_filter, "-fps_mode", "passthrough", "-f", "image2pipe", *codec, "-"]

    async def _iter_records(self, args: List[str]) -> AsyncIterator[bytes]:
        """
        Run one decoder and yield each complete image from its stdout.

        The decoder is killed if the consumer stops early.
        """
        try:
            process = await self._spawn(args)
        except OSError as e:
            raise ExtractionError(f"Could not start ffmpeg ({self.ffmpeg_path}): {e}") from e

        async def _read_stderr() -> bytes:
            tail = b""
            while True:
                chunk = await process.stderr.read(READ_SIZE)
                if not chunk:
                    return tail
                tail = (tail + chunk)[-STDERR_TAIL:]

        stderr_task = asyncio.create_task(_read_stderr())
        parser = ImageStreamParser.for_format(self.image_format)
        finished = False
        try:
            while True:
                chunk = await process.stdout.read(READ_SIZE)
                if not chunk:
                    break
                for record in parser.feed(chunk):
                    yield record
            await process.wait()
            finished = True
        finally:
            if not finished:
                if process.returncode is None:
                    process.kill()
                    await process.wait()
                stderr_task.cancel()

        stderr = await stderr_task
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise ExtractionError(f"ffmpeg exited with code {process.returncode}: {detail}")

    async def _collect(self, args: List[str]) -> List[bytes]:
        return [record async for record in self._iter_records(args)]

    # =========================================================================
    # MODE 1: SEEKING
    # =========================================================================

    async def _seek_one(self, url: str, frame_number: int, fps: float) -> ExtractedFrame:
        timestamp = frame_number / fps
        args = [
            "-hide_banner", "-loglevel", "error",
            "-ss", f"{timestamp:.6f}",
            "-i", url,
            "-frames:v", "1",
            *self._pipe_args(self._scale()),
        ]
        records = await self._collect(args)
        if not records:
            raise ExtractionError(f"No image decoded at frame {frame_number} ({timestamp:.3f}s)")
        return ExtractedFrame(records[0], frame_number=frame_number, timestamp=timestamp)

    async def extract_frames_with_seeking(
        self,
        url: str,
        frame_numbers: Sequence[int],
        fps: float,
        concurrency: int = 4,
    ) -> List[ExtractedFrame]:
        """One decoder run per frame, at most `concurrency` at a time."""
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(n: int) -> ExtractedFrame:
            async with semaphore:
                return await self._seek_one(url, n, fps)

        frames = await asyncio.gather(*(_bounded(n) for n in frame_numbers))
        print(f"   ✓ Seek-extracted {len(frames)} frames")
        return list(frames)

    # =========================================================================
    # MODE 2: SELECT FILTER (CHUNKED)
    # =========================================================================

    async def extract_frames_at_positions(
        self,
        url: str,
        frame_numbers: Sequence[int],
        fps: float,
    ) -> List[ExtractedFrame]:
        """
        Extract exact frame numbers with ffmpeg's select filter.

        Requests are sorted, de-duplicated and split into ordered chunks of
        chunk_threshold frames; chunks run one after another. Decoded images
        come back in ascending frame order and are paired with the request
        list in that order.
        """
        wanted = sorted(set(frame_numbers))
        chunks = [wanted[i:i + self.chunk_threshold] for i in range(0, len(wanted), self.chunk_threshold)]
        frames: List[ExtractedFrame] = []

        for index, chunk in enumerate(chunks, start=1):
            args = [
                "-hide_banner", "-loglevel", "error",
                "-i", url,
                *self._pipe_args(f"{build_select_filter(chunk)},{self._scale()}"),
            ]
            records = await self._collect(args)
            if len(records) < len(chunk):
                print(f"   ⚠️ Chunk {index}/{len(chunks)}: {len(records)} of {len(chunk)} frames decoded "
                      f"(requests past the end of the video?)")
            frames.extend(
                ExtractedFrame(image, frame_number=n, timestamp=n / fps)
                for n, image in zip(chunk, records)
            )
            if len(chunks) > 1:
                print(f"   📦 Chunk {index}/{len(chunks)}: {len(records)} frames")

        return frames

    # =========================================================================
    # MODE 3: INTERVAL
    # =========================================================================

    async def extract_interval_frames(
        self,
        url: str,
        interval_frames: int,
        fps: Optional[float] = None,
    ) -> List[ExtractedFrame]:
        """Every Nth frame, numbered index * N."""
        if interval_frames < 1:
            raise ValueError(f"interval_frames must be >= 1, got {interval_frames}")
        args = [
            "-hide_banner", "-loglevel", "error",
            "-i", url,
            *self._pipe_args(f"select='not(mod(n\\,{interval_frames}))',{self._scale()}"),
        ]
        records = await self._collect(args)
        frames = []
        for index, image in enumerate(records):
            frame_number = index * interval_frames
            frames.append(ExtractedFrame(
                image,
                frame_number=frame_number,
                timestamp=frame_number / fps if fps else None,
            ))
        print(f"   ✓ Extracted {len(frames)} frames every {interval_frames} frames")
        return frames

    # =========================================================================
    # MODE 4: KEYFRAMES
    # =========================================================================

    async def extract_keyframes(self, url: str, metadata: VideoMetadata) -> List[ExtractedFrame]:
        """
        Natural I-frames of the video.

        Timestamps are approximate: keyframes are assumed to be spaced
        uniformly (index * duration / count). Use refinement windows around
        any candidate before trusting its exact position.
        """
        args = [
            "-hide_banner", "-loglevel", "error",
            "-i", url,
            *self._pipe_args(f"select='eq(pict_type\\,I)',{self._scale()}"),
        ]
        records = await self._collect(args)
        count = len(records)
        frames = []
        for index, image in enumerate(records):
            timestamp = index * metadata.duration_seconds / count
            frames.append(ExtractedFrame(image, frame_number=round(timestamp * metadata.fps), timestamp=timestamp))
        print(f"   ✓ Extracted {count} keyframes (approximate timestamps)")
        return frames

    # =========================================================================
    # MODE 5: FULL EXTRACTION + STREAMING HASH
    # =========================================================================

    async def extract_and_hash_all(
        self,
        url: str,
        fps: float,
        hasher: FrameHasher,
        decimation_factor: int = 1,
    ) -> List[FrameHash]:
        """
        Decode every Dth frame in one long decoder run and hash as it streams.

        Frames go through a bounded queue to a drain task that hashes up to
        hash_batch_size at a time. Only hashes are kept. A hashing failure
        stops the decoder and propagates.
        """
        if decimation_factor < 1:
            raise ValueError(f"decimation_factor must be >= 1, got {decimation_factor}")

        video_filter = self._scale()
        if decimation_factor > 1:
            video_filter = f"select='not(mod(n\\,{decimation_factor}))',{video_filter}"
        args = ["-hide_banner", "-loglevel", "error", "-i", url, *self._pipe_args(video_filter)]

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.hash_queue_size)
        hashes: List[FrameHash] = []

        async def _drain() -> None:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                batch = [item]
                reached_end = False
                while len(batch) < self.hash_batch_size and not queue.empty():
                    item = queue.get_nowait()
                    if item is _END:
                        reached_end = True
                        break
                    batch.append(item)
                hashes.extend(await hasher.hash_frames(batch))
                if reached_end:
                    return

        drain_task = asyncio.create_task(_drain())
        try:
            index = 0
            async with aclosing(self._iter_records(args)) as records:
                async for image in records:
                    frame_number = index * decimation_factor
                    await self._enqueue(queue, drain_task, ExtractedFrame(
                        image, frame_number=frame_number, timestamp=frame_number / fps,
                    ))
                    index += 1
            await self._enqueue(queue, drain_task, _END)
            await drain_task
        finally:
            if not drain_task.done():
                drain_task.cancel()

        print(f"   ✓ Hashed {len(hashes)} frames (every {decimation_factor} frame(s))")
        return hashes

    @staticmethod
    async def _enqueue(queue: asyncio.Queue, drain_task: asyncio.Task, item) -> None:
        """Put into the queue, or surface the drain task's error if it died first."""
        if drain_task.done():
            drain_task.result()
            raise ExtractionError("Hash drain stopped before the decoder finished")
        put_task = asyncio.create_task(queue.put(item))
        done, _ = await asyncio.wait({put_task, drain_task}, return_when=asyncio.FIRST_COMPLETED)
        if put_task not in done:
            put_task.cancel()
            drain_task.result()
            raise ExtractionError("Hash drain stopped before the decoder finished")

    # =========================================================================
    # MODE 6: REFINEMENT WINDOWS
    # =========================================================================

    async def _extract_window(self, url: str, start: float, end: float, fps: float) -> List[ExtractedFrame]:
        start_frame = math.ceil(start * fps - 1e-6)
        end_frame = math.floor(end * fps + 1e-6)
        count = end_frame - start_frame + 1
        if count <= 0:
            return []
        args = [
            "-hide_banner", "-loglevel", "error",
            "-ss", f"{start_frame / fps:.6f}",
            "-i", url,
            "-frames:v", str(count),
            *self._pipe_args(self._scale()),
        ]
        records = await self._collect(args)
        return [
            ExtractedFrame(image, frame_number=start_frame + i, timestamp=(start_frame + i) / fps)
            for i, image in enumerate(records)
        ]

    async def extract_refinement_frames(
        self,
        url: str,
        timestamps: Sequence[float],
        fps: float,
        window_seconds: float = 0.5,
        concurrency: int = 4,
    ) -> List[ExtractedFrame]:
        """Every frame within window_seconds of each timestamp, sorted by frame number."""
        groups = merge_time_windows(timestamps, window_seconds, self.merge_gap_seconds)
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(start: float, end: float) -> List[ExtractedFrame]:
            async with semaphore:
                return await self._extract_window(url, start, end, fps)

        results = await asyncio.gather(*(_bounded(s, e) for s, e in groups))

        by_number = {}
        for frames in results:
            for frame in frames:
                by_number.setdefault(frame.frame_number, frame)
        frames = [by_number[n] for n in sorted(by_number)]
        print(f"   ✓ Refinement: {len(timestamps)} timestamps → {len(groups)} windows, {len(frames)} frames")
        return frames
