"""
Metadata Probe

Reads fps, duration, frame count and dimensions with ffprobe.
No retries: a probe failure is fatal to the job.
"""

import asyncio
import json
import math
from fractions import Fraction
from typing import Optional

from commentsync.core.exceptions import MetadataError
from commentsync.models.frames import VideoMetadata


def _parse_rate(rate: Optional[str]) -> Optional[float]:
    """Parse an ffprobe rational like "24000/1001"."""
    if not rate:
        return None
    try:
        value = Fraction(rate)
    except (ValueError, ZeroDivisionError):
        return None
    return float(value) if value > 0 else None


def parse_probe_output(data: dict) -> VideoMetadata:
    """
    Turn ffprobe's -show_format -show_streams JSON into VideoMetadata.

    Uses the first video stream. frame_count is floor(duration * fps).
    """
    streams = data.get("streams") or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise MetadataError("No video stream found")

    fps = _parse_rate(video_stream.get("r_frame_rate")) or _parse_rate(video_stream.get("avg_frame_rate"))
    if fps is None:
        raise MetadataError(f"Unusable frame rate: {video_stream.get('r_frame_rate')!r}")

    raw_duration = (data.get("format") or {}).get("duration") or video_stream.get("duration")
    try:
        duration = float(raw_duration)
    except (TypeError, ValueError):
        raise MetadataError(f"Unusable duration: {raw_duration!r}")

    return VideoMetadata(
        fps=fps,
        duration_seconds=duration,
        frame_count=math.floor(duration * fps),
        width=int(video_stream.get("width") or 0),
        height=int(video_stream.get("height") or 0),
    )


class MetadataProbe:
    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    async def probe(self, url: str) -> VideoMetadata:
        """
        Probe a video URL (or local path).

        Raises:
            MetadataError: spawn failure, nonzero exit, bad JSON, or no usable stream
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            url,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MetadataError(f"Could not run ffprobe ({self.ffprobe_path}): {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[-500:]
            raise MetadataError(f"ffprobe exited with code {process.returncode}: {detail}")

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise MetadataError(f"ffprobe returned invalid JSON: {e}") from e

        metadata = parse_probe_output(data)
        print(f"   🎬 Probed: {metadata.fps:.3f} fps, {metadata.duration_seconds:.1f}s, "
              f"{metadata.frame_count} frames, {metadata.width}x{metadata.height}")
        return metadata
