import pytest

from commentsync.core.config import CommentSyncConfig, reset_config
from commentsync.core.container import reset_container
from commentsync.core.frameio_client import Session
from commentsync.models.frames import SourceComment

from fakes import FPS, FakeDecoder, FakePlatformClient, FakeVideo, shifted_content


@pytest.fixture(autouse=True)
def _reset_globals():
    reset_config()
    reset_container()
    yield
    reset_config()
    reset_container()


@pytest.fixture
def config(tmp_path):
    return CommentSyncConfig(
        ffmpeg_path="ffmpeg",
        ffprobe_path="ffprobe",
        data_dir=tmp_path,
        transfer_batch_delay_seconds=60.0,
    )


@pytest.fixture
def videos():
    return {
        "https://cdn/source.mp4": FakeVideo(frame_count=240, fps=FPS),
        "https://cdn/target.mp4": FakeVideo(frame_count=288, fps=FPS, content=shifted_content),
    }


@pytest.fixture
def decoder(videos):
    return FakeDecoder(videos)


@pytest.fixture
def session():
    return Session(access_token="token", refresh_token="refresh", expires_at=0.0)


@pytest.fixture
def comments():
    return [
        SourceComment("c1", "Fix the colour here", 30),
        SourceComment("c2", "Logo too small", 100),
        SourceComment("c3", "Cut earlier", 200),
    ]


@pytest.fixture
def platform(comments):
    return FakePlatformClient(
        proxies={"src": "https://cdn/source.mp4", "tgt": "https://cdn/target.mp4"},
        comments={"src": comments},
    )
