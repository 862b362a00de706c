"""
Shared fixtures for the timeline sync tests.
"""

import pytest

from timeline_sync.backends.memory import (
    InMemoryAssetStore,
    InMemoryAuthProvider,
    InMemoryDocumentStore,
)
from timeline_sync.config import Settings
from timeline_sync.context import EngineContext
from timeline_sync.retry import RetryPolicy

from tests.helpers import RecordingSleep, StateRecorder


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def recorder():
    return StateRecorder()


@pytest.fixture
def settings():
    return Settings(app_scope="test-app")


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def assets():
    return InMemoryAssetStore()


@pytest.fixture
def auth():
    return InMemoryAuthProvider(tokens={"good-token": "user-1"})


@pytest.fixture
def context(settings, documents, assets, auth, sleeps):
    """In-memory context whose retries never actually wait."""
    return EngineContext(
        settings=settings,
        documents=documents,
        assets=assets,
        auth=auth,
        retry=RetryPolicy(
            settings.retry_max_attempts,
            settings.retry_initial_delay_ms,
            sleep=sleeps,
        ),
    )
