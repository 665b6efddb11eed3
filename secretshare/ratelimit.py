"""Fixed-window admission control per operation class and client identity.

Counters live in a ``limits`` storage chosen by ``RATELIMIT_STORAGE_URI``. The
default ``memory://`` is per process and forgets everything on restart; point
multi-instance deployments at a shared backend (``redis://...``).
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, Mapping

from flask import current_app, request
from flask_login import current_user
from limits.storage import storage_from_string

from .errors import RateLimited

logger = logging.getLogger("secretshare.ratelimit")

UNKNOWN_CLIENT = "unknown"

CREATE_SECRET = "create_secret"
ACCESS_SECRET = "access_secret"
AUTH = "auth"
API = "api"

DEFAULT_POLICIES = {
    CREATE_SECRET: (5, 60),
    ACCESS_SECRET: (20, 60),
    AUTH: (10, 15 * 60),
    API: (100, 15 * 60),
}


@dataclass(frozen=True)
class Hit:
    total_hits: int
    time_until_reset: float


@dataclass(frozen=True)
class Admission:
    allowed: bool
    remaining: int
    retry_after: int | None = None
    reset_at: datetime | None = None
    limit: int | None = None


class BaseCounterStore:
    def increment(self, key: str, window_seconds: int) -> Hit:  # pragma: no cover - interface
        raise NotImplementedError

    def reset(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class LimitsCounterStore(BaseCounterStore):
    """Counters kept in a ``limits`` storage (memory, redis, memcached...)."""

    def __init__(self, uri: str, clock: Callable[[], float] = time.time):
        self.storage = storage_from_string(uri)
        self.clock = clock

    def increment(self, key: str, window_seconds: int) -> Hit:
        total = self.storage.incr(key, window_seconds, amount=1)
        reset_at = self.storage.get_expiry(key)
        return Hit(total_hits=int(total), time_until_reset=max(0.0, reset_at - self.clock()))

    def reset(self, key: str) -> None:
        self.storage.clear(key)


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """Forwarded-for, then real-ip, then the CDN header, else the shared bucket."""
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    cf_ip = (headers.get("CF-Connecting-IP") or "").strip()
    if cf_ip:
        return cf_ip
    return UNKNOWN_CLIENT


class RateLimiter:
    def __init__(
        self,
        store: BaseCounterStore,
        policies: Mapping[str, tuple[int, int]] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policies = dict(DEFAULT_POLICIES)
        self.policies.update(policies or {})
        self.clock = clock

    def increment(self, key: str, window_seconds: int) -> Hit:
        return self.store.increment(key, window_seconds)

    def check_admission(self, operation_class: str, client_key: str) -> Admission:
        try:
            max_requests, window = self.policies[operation_class]
        except KeyError:
            raise ValueError(f"Unknown operation class: {operation_class}") from None
        return self._check(f"rate_limit:{operation_class}:{client_key}", max_requests, window)

    def check_user_rate_limit(
        self,
        user_id,
        action: str,
        max_requests: int = 50,
        window_seconds: int = 60 * 60,
    ) -> Admission:
        return self._check(f"user_rate_limit:{user_id}:{action}", max_requests, window_seconds)

    def _check(self, key: str, max_requests: int, window_seconds: int) -> Admission:
        try:
            hit = self.increment(key, window_seconds)
        except Exception:
            # Fail open: a broken counter store must not take the service down.
            logger.exception("Rate limiting error for %s", key.split(":", 1)[0])
            return Admission(allowed=True, remaining=max_requests, limit=max_requests)
        reset_at = datetime.fromtimestamp(self.clock() + hit.time_until_reset, tz=timezone.utc)
        remaining = max(0, max_requests - hit.total_hits)
        if hit.total_hits > max_requests:
            return Admission(
                allowed=False,
                remaining=remaining,
                retry_after=max(1, math.ceil(hit.time_until_reset)),
                reset_at=reset_at,
                limit=max_requests,
            )
        return Admission(allowed=True, remaining=remaining, reset_at=reset_at, limit=max_requests)


def create_rate_limiter(app) -> RateLimiter:
    policies = app.config.get("RATELIMIT_POLICIES") or {}
    uri = app.config.get("RATELIMIT_STORAGE_URI") or "memory://"
    if uri.startswith("memory:"):
        app.logger.info(
            "Rate limit counters are in-process; not suitable for multi-instance deployments"
        )
    return RateLimiter(LimitsCounterStore(uri), policies)


def get_rate_limiter() -> RateLimiter:
    limiter = current_app.extensions.get("rate_limiter")
    if not limiter:
        limiter = create_rate_limiter(current_app)
        current_app.extensions["rate_limiter"] = limiter
    return limiter


def client_key() -> str:
    return resolve_client_ip(request.headers)


def admit(operation_class: str) -> Admission:
    """Admission check for the current request; raises ``RateLimited`` on denial."""
    client = client_key()
    admission = get_rate_limiter().check_admission(operation_class, client)
    if not admission.allowed:
        current_app.logger.warning(
            "Rate limit exceeded",
            extra={"operation": operation_class, "ip": client},
        )
        raise RateLimited(admission)
    return admission


def admit_user(action: str) -> Admission:
    """Per-user budget for authenticated mutation paths."""
    admission = get_rate_limiter().check_user_rate_limit(
        current_user.get_id(),
        action,
        max_requests=current_app.config.get("USER_RATELIMIT_MAX", 50),
        window_seconds=current_app.config.get("USER_RATELIMIT_WINDOW", 60 * 60),
    )
    if not admission.allowed:
        current_app.logger.warning(
            "User rate limit exceeded",
            extra={"action": action, "user": current_user.get_id()},
        )
        raise RateLimited(admission, "Too many requests for this account, please try again later.")
    return admission


def rate_limit(operation_class: str):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            admit(operation_class)
            return view(*args, **kwargs)

        return wrapped

    return decorator
