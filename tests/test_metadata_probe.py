import asyncio

import pytest

from commentsync.core.exceptions import MetadataError
from commentsync.core.metadata_probe import MetadataProbe, parse_probe_output


def _probe_json(**stream_overrides):
    stream = {
        "codec_type": "video",
        "r_frame_rate": "24000/1001",
        "avg_frame_rate": "24000/1001",
        "width": 1920,
        "height": 1080,
    }
    stream.update(stream_overrides)
    return {
        "streams": [{"codec_type": "audio", "r_frame_rate": "0/0"}, stream],
        "format": {"duration": "10.500000"},
    }


def test_parses_first_video_stream():
    metadata = parse_probe_output(_probe_json())
    assert metadata.fps == pytest.approx(23.976, abs=1e-3)
    assert metadata.duration_seconds == pytest.approx(10.5)
    assert metadata.frame_count == 251
    assert (metadata.width, metadata.height) == (1920, 1080)


def test_integer_frame_rate():
    metadata = parse_probe_output(_probe_json(r_frame_rate="25/1"))
    assert metadata.fps == 25.0
    assert metadata.frame_count == 262


def test_falls_back_to_average_rate():
    metadata = parse_probe_output(_probe_json(r_frame_rate="0/0", avg_frame_rate="30/1"))
    assert metadata.fps == 30.0


def test_no_video_stream():
    with pytest.raises(MetadataError, match="No video stream"):
        parse_probe_output({"streams": [{"codec_type": "audio"}], "format": {"duration": "3"}})


def test_unusable_rate():
    with pytest.raises(MetadataError):
        parse_probe_output(_probe_json(r_frame_rate="0/0", avg_frame_rate="0/0"))


def test_missing_duration():
    data = _probe_json()
    data["format"] = {}
    with pytest.raises(MetadataError, match="duration"):
        parse_probe_output(data)


def test_missing_ffprobe_binary():
    probe = MetadataProbe("/nonexistent/ffprobe")
    with pytest.raises(MetadataError):
        asyncio.run(probe.probe("https://cdn/video.mp4"))
