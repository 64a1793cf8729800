import asyncio
import threading

import pytest

from commentsync.core.container import ServiceContainer
from commentsync.core.exceptions import AuthError, JobNotFoundError
from commentsync.core.frame_extractor import FrameExtractor
from commentsync.core.frameio_client import Session
from commentsync.core.job_store import MemoryJobStore, MemoryTokenStore
from commentsync.core.orchestrator import process_job
from commentsync.models.frames import SourceComment
from commentsync.models.schemas import JobState, ProcessingJob

from fakes import FakeProbe, RecordingSleep


class RecordingJobStore(MemoryJobStore):
    def __init__(self):
        super().__init__()
        self.history = []
        self.threads = set()

    def save(self, job):
        self.history.append((job.status, job.progress))
        self.threads.add(threading.get_ident())
        super().save(job)


def _job(**overrides):
    fields = dict(id="job-1", account_id="acct", source_file_id="src", target_file_id="tgt")
    fields.update(overrides)
    return ProcessingJob(**fields)


def _container(config, platform, decoder, videos, tokens=None, store=None):
    container = ServiceContainer(config)
    container.register_client(platform)
    container.register_probe(FakeProbe(videos))
    container.register_extractor(FrameExtractor(spawn=decoder, chunk_threshold=config.chunk_threshold))
    container.register_job_store(store if store is not None else RecordingJobStore())
    container.register_token_store(tokens if tokens is not None else MemoryTokenStore(Session("token", "refresh")))
    container.register_sleep(RecordingSleep())
    return container


def _run(container, job):
    container.get_job_store().save(job)
    return asyncio.run(process_job(job.id, container))


def test_job_relocates_comments_to_shifted_edit(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert result.success
    assert (result.transferred, result.skipped, result.failed) == (3, 0, 0)
    assert sorted(c.frame_number for c in platform.created) == [79, 149, 249]
    assert all(c.text.startswith("[Transferred ✓] ") for c in platform.created)

    job = container.get_job_store().load("job-1")
    assert job.status is JobState.COMPLETED
    assert job.progress == 1.0
    assert job.matches_found == 3
    assert job.comments_transferred == 3
    assert job.completed_at is not None


def test_progress_checkpoints_never_decrease(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    store = container.get_job_store()
    _run(container, _job())

    progress = [p for _, p in store.history]
    assert progress == sorted(progress)
    for checkpoint in (0.05, 0.20, 0.60, 0.80, 0.95, 1.0):
        assert checkpoint in progress


def test_many_comments_use_select_filter(config, platform, decoder, videos):
    config.chunk_threshold = 2
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert result.transferred == 3
    source_calls = [c for c in decoder.calls if "https://cdn/source.mp4" in c]
    assert any("eq(n" in arg for call in source_calls for arg in call)


def test_comment_outside_source_counts_as_skipped(config, platform, decoder, videos, comments):
    platform.comments["src"] = comments + [SourceComment("c9", "past the end", 500)]
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert result.success
    assert (result.transferred, result.skipped) == (3, 1)


def test_missing_proxy_fails_job(config, platform, decoder, videos):
    del platform.proxies["tgt"]
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert not result.success
    job = container.get_job_store().load("job-1")
    assert job.status is JobState.FAILED
    assert job.error_message == "Target file has no efficient proxy available"
    assert job.message == "Error: Target file has no efficient proxy available"
    assert job.error_code == result.error_code == "no_proxy"


def test_no_comments_fails_job(config, platform, decoder, videos):
    platform.comments = {}
    container = _container(config, platform, decoder, videos)
    _run(container, _job())
    assert container.get_job_store().load("job-1").error_message == "No comments found on source file"


def test_missing_credentials_fail_job(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos, tokens=MemoryTokenStore())
    result = _run(container, _job())

    assert not result.success
    job = container.get_job_store().load("job-1")
    assert job.status is JobState.FAILED
    assert job.error_message == "No Frame.io credentials for account acct"
    assert job.error_code == result.error_code == "auth_error"


def test_rejected_comment_completes_with_errors(config, platform, decoder, videos):
    platform.fail_texts = {"Logo"}
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert not result.success
    assert (result.transferred, result.failed) == (2, 1)
    job = container.get_job_store().load("job-1")
    assert job.status is JobState.COMPLETED_WITH_ERRORS
    assert job.comments_transferred == 2


def test_refreshed_session_is_saved(config, platform, decoder, videos):
    tokens = MemoryTokenStore(Session("expired", "refresh"))
    container = _container(config, platform, decoder, videos, tokens=tokens)
    _run(container, _job())
    assert tokens.load("acct").access_token == "refreshed-token"


def test_finished_job_is_not_rerun(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job(status=JobState.COMPLETED))

    assert not result.success
    assert decoder.calls == []
    assert container.get_job_store().load("job-1").status is JobState.COMPLETED


def test_unknown_job_raises(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    with pytest.raises(JobNotFoundError):
        asyncio.run(process_job("missing", container))


def test_rejected_refresh_is_reported_as_auth_error(config, platform, decoder, videos):
    async def reject(session):
        raise AuthError("Frame.io rejected credentials (HTTP 401)")

    platform.ensure_fresh = reject
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert not result.success
    assert result.error_code == "auth_error"
    assert container.get_job_store().load("job-1").error_code == "auth_error"


def test_completed_job_has_no_error_code(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())
    assert result.error_code is None
    assert container.get_job_store().load("job-1").error_code is None


def test_job_saves_happen_off_the_event_loop_thread(config, platform, decoder, videos):
    container = _container(config, platform, decoder, videos)
    store = container.get_job_store()
    store.save(_job())
    store.threads.clear()

    asyncio.run(process_job("job-1", container))

    assert store.threads
    assert threading.get_ident() not in store.threads


@pytest.mark.parametrize("mode, setting", [("interval", {"interval_frames": 4}), ("keyframes", {})])
def test_sparse_target_pool_is_refined_before_matching(config, platform, decoder, videos, mode, setting):
    config.target_pool_mode = mode
    config.refinement_window_seconds = 12.0  # one window spans the whole 12s target
    for name, value in setting.items():
        setattr(config, name, value)
    container = _container(config, platform, decoder, videos)
    result = _run(container, _job())

    assert result.success
    assert sorted(c.frame_number for c in platform.created) == [79, 149, 249]

    target_calls = [c for c in decoder.calls if "https://cdn/target.mp4" in c]
    refinement_calls = [c for c in target_calls if "-ss" in c and "-frames:v" in c]
    assert refinement_calls
    assert len(refinement_calls) < len(target_calls)
