"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from backend.app.main import app
from backend.app.core.config import Settings
from backend.app.services.dispatcher import Dispatcher
from backend.app.services.engine import TrackingEngine
from backend.app.services.kv_store import InMemoryKeyValueStore
from backend.app.services.notification_service import NotificationService
from backend.app.services.route_tracking import RouteStateManager
from backend.tests.support import FakeClock, RecordingTransport


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        store_backend="memory",
        observer_timeout_seconds=1.0,
        push_timeout_seconds=1.0,
        simulator_tick_seconds=0.01,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def route_channel():
    return Dispatcher("routes")


@pytest.fixture
def notification_channel():
    return Dispatcher("notifications")


@pytest.fixture
def notification_service(store, notification_channel, settings):
    return NotificationService(store, notification_channel, settings)


@pytest.fixture
def manager(store, route_channel, notification_service, settings, clock):
    return RouteStateManager(store, route_channel, notification_service, settings, clock=clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
async def engine(settings, store, transport, clock):
    engine = TrackingEngine(settings, store, transport=transport, clock=clock)
    yield engine
    await engine.close()


@pytest.fixture
async def client(engine):
    """Async client for testing, bound to the test engine."""
    app.state.engine = engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
