import asyncio

import pytest
from fastapi import HTTPException

from commentsync.core.container import ServiceContainer
from commentsync.core.frameio_client import Session
from commentsync.core.job_store import MemoryJobStore, MemoryTokenStore
from commentsync.main import CreateJobRequest, check_version_stack

from fakes import FakePlatformClient


def _container(config, client, tokens=None):
    container = ServiceContainer(config)
    container.register_client(client)
    container.register_job_store(MemoryJobStore())
    container.register_token_store(tokens if tokens is not None else MemoryTokenStore(Session("token", "refresh")))
    return container


def _request(source="cut_v1", target="cut_v2"):
    return CreateJobRequest(account_id="acct", source_file_id=source, target_file_id=target)


def _status_of(container, request):
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(check_version_stack(container, request))
    return excinfo.value.status_code


def test_versions_of_one_stack_pass(config):
    client = FakePlatformClient(version_stacks={"cut_v1": "stack-a", "cut_v2": "stack-a"})
    asyncio.run(check_version_stack(_container(config, client), _request()))


def test_mismatched_pair_is_unprocessable(config):
    client = FakePlatformClient(version_stacks={"cut_v1": "stack-a", "trailer_v1": "stack-b"})
    assert _status_of(_container(config, client), _request(target="trailer_v1")) == 422


def test_file_outside_any_stack_is_unprocessable(config):
    client = FakePlatformClient(version_stacks={"cut_v1": "stack-a"})
    assert _status_of(_container(config, client), _request(target="loose")) == 422


def test_missing_credentials_are_unauthorized(config):
    client = FakePlatformClient(version_stacks={"cut_v1": "stack-a", "cut_v2": "stack-a"})
    assert _status_of(_container(config, client, tokens=MemoryTokenStore()), _request()) == 401


def test_rejected_credentials_are_unauthorized(config):
    client = FakePlatformClient(version_stacks={"cut_v1": "stack-a", "cut_v2": "stack-a"})
    tokens = MemoryTokenStore(Session("bad"))
    assert _status_of(_container(config, client, tokens=tokens), _request()) == 401


def test_check_can_be_switched_off(config):
    config.require_version_stack = False
    client = FakePlatformClient()
    asyncio.run(check_version_stack(_container(config, client), _request(target="trailer_v1")))
