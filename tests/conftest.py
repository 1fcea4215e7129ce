"""
Pytest configuration and shared fixtures

Provides fake collaborators for controller unit tests, and fixture content
for tests against a real static file server.
"""

import pytest
from pathlib import Path
from unittest.mock import Mock

from core import EventBus, StaticFileServer
from server_mgmt import LiveServer
from tests.fakes import FakeServerFactory


FIXTURE_ROOT = Path(__file__).parent / "fixture"


@pytest.fixture
def fixture_root() -> str:
    """
    Directory served by real server tests

    Returns:
        Path of tests/fixture as a string
    """
    return str(FIXTURE_ROOT)


@pytest.fixture
def eventbus() -> EventBus:
    return EventBus()


@pytest.fixture
def server_factory() -> FakeServerFactory:
    return FakeServerFactory()


@pytest.fixture
def browser_launcher() -> Mock:
    """
    Mock browser launcher

    Returns:
        Mock with a `launch` method
    """
    return Mock()


@pytest.fixture
def live_server(server_factory, browser_launcher):
    """
    Controller wired to fake collaborators

    Yields:
        LiveServer with plugin options {"test": True}
    """
    live = LiveServer(
        default_options={"test": True},
        server_factory=server_factory,
        browser_launcher=browser_launcher,
    )
    yield live
    live.dispose()


@pytest.fixture
def real_live_server(browser_launcher):
    """
    Controller wired to a real static file server and a mock browser

    Yields:
        LiveServer serving on loopback
    """
    live = LiveServer(
        default_options={"host": "127.0.0.1", "port": 0},
        server_factory=StaticFileServer(),
        browser_launcher=browser_launcher,
    )
    yield live
    live.dispose()
