"""Test doubles: a fake ffmpeg that serves synthetic frames, and a fake Frame.io client."""

import asyncio
import io
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
from PIL import Image

from commentsync.core.exceptions import AuthError, NoProxyError, TransferAPIError, VersionStackError
from commentsync.core.frameio_client import Session
from commentsync.models.frames import SourceComment, VideoMetadata


FPS = 24.0
SHIFT = 48  # target = source delayed by 2.0s of new material


def shifted_content(m: int) -> int:
    """Target frame m: 48 frames of new footage, then the source from frame 0."""
    return 100_000 + m if m < SHIFT else m - SHIFT


# =============================================================================
# IMAGES
# =============================================================================

def block_image(seed: int) -> Image.Image:
    """Random 9x8 grayscale blocks scaled up, so its dHash is effectively random per seed."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(8, 9), dtype=np.uint8)
    return Image.fromarray(blocks, "L").resize((90, 80), Image.Resampling.NEAREST)


def encode(image: Image.Image, image_format: str = "jpeg") -> bytes:
    buffer = io.BytesIO()
    if image_format == "jpeg":
        image.convert("RGB").save(buffer, format="JPEG", quality=90)
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# FAKE DECODER
# =============================================================================

class FakeProcess:
    def __init__(self, stdout_data: bytes, returncode: int = 0, stderr_data: bytes = b""):
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout_data)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr_data)
        self.stderr.feed_eof()
        self._final_returncode = returncode
        self.returncode = None
        self.killed = False

    async def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._final_returncode
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


@dataclass
class FakeVideo:
    """A video whose frame n shows block_image(content(n))."""
    frame_count: int
    fps: float
    content: Callable[[int], int] = lambda n: n
    keyframe_interval: int = 12

    @property
    def metadata(self) -> VideoMetadata:
        return VideoMetadata(
            fps=self.fps,
            duration_seconds=self.frame_count / self.fps,
            frame_count=self.frame_count,
            width=90,
            height=80,
        )


class FakeDecoder:
    """
    Stand-in for the ffmpeg spawn: reads the -ss / -i / -frames:v / -vf
    arguments and writes the matching synthetic frames to stdout.
    """

    def __init__(self, videos: Dict[str, FakeVideo], image_format: str = "jpeg",
                 returncode: int = 0, stderr: bytes = b"", override_stdout: Optional[bytes] = None):
        self.videos = videos
        self.image_format = image_format
        self.returncode = returncode
        self.stderr = stderr
        self.override_stdout = override_stdout
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []
        self._cache: Dict[int, bytes] = {}

    def _image(self, seed: int) -> bytes:
        if seed not in self._cache:
            self._cache[seed] = encode(block_image(seed), self.image_format)
        return self._cache[seed]

    def frames_for(self, args: List[str]) -> List[int]:
        video = self.videos[args[args.index("-i") + 1]]
        video_filter = args[args.index("-vf") + 1]
        start = 0
        if "-ss" in args:
            start = round(float(args[args.index("-ss") + 1]) * video.fps)
        frames = list(range(start, video.frame_count))

        if "eq(n" in video_filter:
            wanted = {int(n) for n in re.findall(r"eq\(n\\,(\d+)\)", video_filter)}
            frames = [n for n in frames if n in wanted]
        elif "mod(n" in video_filter:
            step = int(re.search(r"mod\(n\\,(\d+)\)", video_filter).group(1))
            frames = [n for n in frames if n % step == 0]
        elif "pict_type" in video_filter:
            frames = [n for n in frames if n % video.keyframe_interval == 0]

        if "-frames:v" in args:
            frames = frames[:int(args[args.index("-frames:v") + 1])]
        return frames

    async def __call__(self, args: List[str]) -> FakeProcess:
        self.calls.append(list(args))
        if self.override_stdout is not None:
            data = self.override_stdout
        else:
            video = self.videos[args[args.index("-i") + 1]]
            data = b"".join(self._image(video.content(n)) for n in self.frames_for(args))
        process = FakeProcess(data, self.returncode, self.stderr)
        self.processes.append(process)
        return process


# =============================================================================
# FAKE PLATFORM
# =============================================================================

@dataclass
class CreatedComment:
    account_id: str
    file_id: str
    text: str
    frame_number: int


@dataclass
class FakePlatformClient:
    proxies: Dict[str, str] = field(default_factory=dict)
    comments: Dict[str, List[SourceComment]] = field(default_factory=dict)
    fail_texts: set = field(default_factory=set)
    auth_fail_after: Optional[int] = None
    created: List[CreatedComment] = field(default_factory=list)
    refreshed: int = 0
    version_stacks: Dict[str, str] = field(default_factory=dict)  # file id -> stack id

    async def ensure_fresh(self, session: Session) -> Session:
        if session.access_token == "expired":
            self.refreshed += 1
            return Session("refreshed-token", session.refresh_token, expires_at=10_000_000_000)
        return session

    async def resolve_proxy_url(self, session, account_id, file_id, label="File") -> str:
        if file_id not in self.proxies:
            raise NoProxyError(f"{label} file has no efficient proxy available")
        return self.proxies[file_id]

    async def validate_version_stack(self, session, account_id, source_file_id, target_file_id) -> dict:
        if session.access_token == "bad":
            raise AuthError("Frame.io rejected credentials (HTTP 401)")
        stacks = {self.version_stacks.get(source_file_id), self.version_stacks.get(target_file_id)}
        if None in stacks:
            raise VersionStackError("File is not part of a version stack (no parent)")
        if len(stacks) > 1:
            raise VersionStackError("Files are not in the same version stack")
        return {"version_stack": {"id": stacks.pop(), "type": "version_stack"}, "versions": []}

    async def list_comments(self, session, account_id, file_id) -> List[SourceComment]:
        return list(self.comments.get(file_id, []))

    async def create_comment(self, session, account_id, file_id, text, frame_number) -> str:
        if self.auth_fail_after is not None and len(self.created) >= self.auth_fail_after:
            raise AuthError("Frame.io rejected credentials (HTTP 401)")
        if any(marker in text for marker in self.fail_texts):
            raise TransferAPIError("HTTP 422 for POST comments: rejected", status=422)
        self.created.append(CreatedComment(account_id, file_id, text, frame_number))
        return f"new-{len(self.created)}"


class FakeProbe:
    def __init__(self, videos: Dict[str, FakeVideo]):
        self.videos = videos

    async def probe(self, url: str) -> VideoMetadata:
        return self.videos[url].metadata


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
