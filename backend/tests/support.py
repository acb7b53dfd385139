"""
Shared test doubles and builders.
"""

from datetime import datetime, timedelta, timezone

from backend.app.core.exceptions import TransportError
from backend.app.services.push_delivery import PushTransport

START = datetime(2024, 3, 4, 7, 0, tzinfo=timezone.utc)

# São Paulo test coordinates
PAULISTA = (-23.5505, -46.6333)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingTransport(PushTransport):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.delivered = []
        self.closed = False

    async def deliver(self, notification):
        if self.fail:
            raise TransportError("permission denied")
        self.delivered.append(notification)

    async def close(self):
        self.closed = True


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False
        self.fail = False

    async def ping(self):
        if self._closed or self.fail:
            return False
        return True

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value
        return True

    async def delete(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def aclose(self):
        self._closed = True


def make_stop(stop_id, guardian_ids, coordinate=PAULISTA, **overrides):
    stop = {
        "id": stop_id,
        "label": f"Student {stop_id}",
        "guardian_ids": guardian_ids,
        "coordinate": {"latitude": coordinate[0], "longitude": coordinate[1]} if coordinate else None,
    }
    stop.update(overrides)
    return stop
