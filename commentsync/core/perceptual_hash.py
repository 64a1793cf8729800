"""
Perceptual Hash Engine

64-bit difference hash (dHash): grayscale, shrink to 9x8, and set one bit
per horizontally adjacent pixel pair where the left pixel is brighter.
Bit index is row * 8 + col, packed little-endian in raster order.
"""

import asyncio
import io
from typing import List

import numpy as np
from PIL import Image

from commentsync.core.exceptions import HashError
from commentsync.models.frames import HASH_BITS, ExtractedFrame, FrameHash


HASH_WIDTH = 9
HASH_HEIGHT = 8


def compute_dhash(image_bytes: bytes) -> int:
    """
    Compute the 64-bit dHash of an encoded image (JPEG or PNG).

    Raises:
        HashError: the bytes could not be decoded or resized
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            small = img.convert("L").resize((HASH_WIDTH, HASH_HEIGHT), Image.Resampling.LANCZOS)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise HashError(f"Could not hash image ({len(image_bytes)} bytes): {e}") from e

    pixels = np.asarray(small, dtype=np.int16)
    diff = pixels[:, :-1] > pixels[:, 1:]
    packed = np.packbits(diff.ravel(), bitorder="little")
    return int.from_bytes(packed.tobytes(), "little")


def bit_distance(a: int, b: int) -> int:
    """Number of differing bits (0-64)."""
    return int(np.bitwise_count(np.uint64(a) ^ np.uint64(b)))


def similarity(a: int, b: int) -> float:
    return 1.0 - bit_distance(a, b) / HASH_BITS


def to_hex(bits: int) -> str:
    return FrameHash(bits).hex


def from_hex(text: str) -> int:
    return FrameHash.from_hex(text).bits


class FrameHasher:
    """Hashes ExtractedFrames, keeping CPU work off the event loop."""

    def __init__(self, concurrency: int = 10):
        self.concurrency = max(1, concurrency)

    def hash_frame(self, frame: ExtractedFrame) -> FrameHash:
        return FrameHash(compute_dhash(frame.image), frame.frame_number, frame.timestamp)

    async def hash_frames(self, frames: List[ExtractedFrame]) -> List[FrameHash]:
        """Hash frames in parallel; output order matches input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(frame: ExtractedFrame) -> FrameHash:
            async with semaphore:
                return await asyncio.to_thread(self.hash_frame, frame)

        return list(await asyncio.gather(*(_one(f) for f in frames)))
