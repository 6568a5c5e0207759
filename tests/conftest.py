"""
Pytest configuration and fixtures for the test suite.
"""
import os
import sys

import httpx
import pytest
import pytest_asyncio

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from session_guard import (  # noqa: E402
    AuthenticatedSession,
    MemoryCredentialStore,
    SessionConfig,
    TokenLifecycleManager,
)
from session_guard.failure_logger import configure_failure_logger  # noqa: E402
from tests.fixtures.session_doubles import RecordingNotifier, ScriptedCredentialSource  # noqa: E402
from tests.fixtures.virtual_clock import VirtualClock  # noqa: E402

BASE_URL = "https://api.example.test"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "asyncio: mark test as an async test")


@pytest.fixture(autouse=True)
def failure_log_dir(tmp_path):
    """Keep failures.log out of the working directory."""
    logs_dir = tmp_path / "logs"
    configure_failure_logger(logs_dir)
    yield logs_dir
    configure_failure_logger(None)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def config():
    return SessionConfig(base_url=BASE_URL, probe_enabled=False)


@pytest.fixture
def notifier(clock):
    return RecordingNotifier(clock=clock)


@pytest.fixture
def source(clock):
    return ScriptedCredentialSource(clock)


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def token_manager(source, store, config, clock, notifier):
    return TokenLifecycleManager(
        source=source, store=store, config=config, clock=clock, notifier=notifier
    )


@pytest_asyncio.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest_asyncio.fixture
async def session(source, store, config, clock, notifier, http_client):
    """A fully wired session with a valid credential already stored."""
    authenticated = AuthenticatedSession(
        source,
        config=config,
        store=store,
        clock=clock,
        notifier=notifier,
        http_client=http_client,
    )
    await authenticated.token_manager.start()
    yield authenticated
    await authenticated.close()
