"""Shared fixtures."""

from uuid import uuid4

import pytest

from assethub.services.quota import QuotaValidator
from assethub.services.uploads import UploadSessionManager
from tests.fakes import (
    FakeAssetRegistry,
    FakeStorage,
    FakeUsageSource,
    FakeUsageTracker,
    FrozenClock,
    InMemorySessionStore,
)

CHUNK_SIZE = 5 * 1024 * 1024


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sessions(clock):
    return InMemorySessionStore(clock)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def assets():
    return FakeAssetRegistry()


@pytest.fixture
def usage_tracker():
    return FakeUsageTracker()


@pytest.fixture
def usage_source():
    return FakeUsageSource()


@pytest.fixture
def manager(sessions, storage, assets, usage_tracker, usage_source, clock):
    return UploadSessionManager(
        sessions=sessions,
        storage=storage,
        assets=assets,
        usage=usage_tracker,
        quota=QuotaValidator(usage_source),
        chunk_size=CHUNK_SIZE,
        max_chunks=1000,
        session_ttl=86400,
        chunk_url_expiry=3600,
        max_file_size_mb=1000,
        clock=clock,
    )


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()
