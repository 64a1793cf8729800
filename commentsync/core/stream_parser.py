"""
Split a decoder's concatenated image stream into individual images.

ffmpeg writes back-to-back images to stdout (image2pipe). Records are
delimited by a start marker and an end marker; chunk boundaries can fall
anywhere, including inside a marker.
"""

from typing import List


JPEG_START = b"\xff\xd8"
JPEG_END = b"\xff\xd9"
PNG_START = b"\x89PNG\r\n\x1a\n"
PNG_END = b"IEND\xaeB`\x82"  # IEND chunk type + its fixed CRC


class ImageStreamParser:
    """
    Incremental start/end marker parser.

    Only the unconsumed tail is kept between feeds, and the end-marker scan
    resumes where the previous feed stopped, so a long stream is parsed in
    linear time with bounded memory.
    """

    def __init__(self, start_marker: bytes, end_marker: bytes):
        self.start_marker = start_marker
        self.end_marker = end_marker
        self._buffer = bytearray()
        self._scan_from = 0
        self.records_emitted = 0

    @classmethod
    def for_format(cls, image_format: str) -> "ImageStreamParser":
        if image_format == "jpeg":
            return cls(JPEG_START, JPEG_END)
        if image_format == "png":
            return cls(PNG_START, PNG_END)
        raise ValueError(f"Unsupported image format: {image_format}")

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[bytes]:
        """Append a chunk and return every image it completed."""
        self._buffer.extend(chunk)
        records = []

        while True:
            start = self._buffer.find(self.start_marker)
            if start < 0:
                # Keep a possible partial start marker.
                keep = len(self.start_marker) - 1
                if len(self._buffer) > keep:
                    del self._buffer[:len(self._buffer) - keep]
                self._scan_from = 0
                break
            if start > 0:
                del self._buffer[:start]
                self._scan_from = 0

            search_from = max(len(self.start_marker), self._scan_from)
            end = self._buffer.find(self.end_marker, search_from)
            if end < 0:
                self._scan_from = max(len(self.start_marker), len(self._buffer) - len(self.end_marker) + 1)
                break

            stop = end + len(self.end_marker)
            records.append(bytes(self._buffer[:stop]))
            del self._buffer[:stop]
            self._scan_from = 0

        self.records_emitted += len(records)
        return records
