"""Shared fixtures: testing config, controllable clocks, in-memory collaborators."""
import threading
from datetime import datetime, timedelta

import pytest

from secretshare import create_app
from secretshare.config import Config
from secretshare.crypto import SecretCodec, parse_key
from secretshare.lifecycle import SecretService
from secretshare.notifications import BaseNotifier, NotificationDispatcher
from secretshare.ratelimit import BaseCounterStore, Hit
from secretshare.store import InMemorySecretStore

TEST_KEY = "0f1e2d3c4b5a69788796a5b4c3d2e1f00112233445566778899aabbccddeeff0"
OWNER_EMAIL = "owner@example.com"


class AppTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    FORCE_HTTPS = False
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    ENCRYPTION_KEY = TEST_KEY
    ENCRYPTION_KEY_ID = 1
    ENCRYPTION_RETIRED_KEYS = {}
    SMTP_HOST = None
    RATELIMIT_STORAGE_URI = "memory://"
    ALLOW_USER_REGISTRATIONS = True


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTime:
    """Epoch-seconds clock for the rate limiter."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCounterStore(BaseCounterStore):
    """Fixed-window counters driven by a fake clock."""

    def __init__(self, clock):
        self.clock = clock
        self.windows = {}

    def increment(self, key, window_seconds):
        now = self.clock()
        count, reset_at = self.windows.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        self.windows[key] = (count + 1, reset_at)
        return Hit(total_hits=count + 1, time_until_reset=reset_at - now)

    def reset(self, key):
        self.windows.pop(key, None)


class RecordingNotifier(BaseNotifier):
    def __init__(self, result: bool = True):
        self.result = result
        self.sent = []
        self.lock = threading.Lock()

    def notify_burn(self, notification) -> bool:
        with self.lock:
            self.sent.append(notification)
        return self.result


@pytest.fixture
def app_config(tmp_path):
    """Overrides applied on top of AppTestConfig; tests may redefine this fixture."""
    return {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'secretshare.db'}"}


@pytest.fixture
def app(app_config):
    app = create_app(type("PerTestConfig", (AppTestConfig,), dict(app_config)))
    yield app
    app.extensions["secret_service"].dispatcher.shutdown(wait=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def codec():
    return SecretCodec({1: parse_key(TEST_KEY)}, active_key_id=1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySecretStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    dispatcher = NotificationDispatcher(notifier, lambda owner_id: OWNER_EMAIL, max_workers=1)
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def service(store, codec, dispatcher, clock):
    return SecretService(store, codec, dispatcher, clock=clock)
