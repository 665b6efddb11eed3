import os
from datetime import timedelta


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


def _parse_policy(raw_value: str | None, default: tuple[int, int]) -> tuple[int, int]:
    """Parse "<max>/<seconds>" into (max_requests, window_seconds)."""
    if not raw_value:
        return default
    try:
        max_requests, window = raw_value.split("/", 1)
        return int(max_requests), int(window)
    except ValueError:
        return default


def _retired_keys() -> dict[int, str]:
    keys = {}
    prefix = "SECRETSHARE_ENCRYPTION_KEY_V"
    for name, value in os.environ.items():
        if name.startswith(prefix) and name[len(prefix):].isdigit():
            keys[int(name[len(prefix):])] = value
    return keys


class Config:
    SECRET_KEY = os.environ.get("SECRETSHARE_SECRET", os.urandom(32))
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "SECRETSHARE_DATABASE_URI", "sqlite:///secretshare.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.environ.get("SECRETSHARE_REDIS_URL")
    _rl_storage = os.environ.get("SECRETSHARE_RATELIMIT_URI")
    if _rl_storage and _rl_storage.strip().startswith("$"):
        _rl_storage = None
    RATELIMIT_STORAGE_URI = _rl_storage or REDIS_URL or "memory://"
    _cookie_secure = _env_flag("SECRETSHARE_COOKIE_SECURE", "true")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _cookie_secure
    REMEMBER_COOKIE_SECURE = _cookie_secure
    REMEMBER_COOKIE_HTTPONLY = True
    FORCE_HTTPS = _env_flag("SECRETSHARE_FORCE_HTTPS", "true")
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    WTF_CSRF_TIME_LIMIT = 3600
    MAX_CONTENT_LENGTH = int(os.environ.get("SECRETSHARE_MAX_REQUEST", 256 * 1024))

    SECURITY_CSP = {
        "default-src": ["'self'"],
        "img-src": ["'self'", "data:"],
        "script-src": ["'self'"],
        "style-src": ["'self'"],
        "connect-src": ["'self'"],
        "frame-ancestors": ["'none'"],
    }

    # Rate limiting
    RATELIMIT_DEFAULT = "1000 per hour"
    RATELIMIT_STRATEGY = "fixed-window"
    RATELIMIT_POLICIES = {
        "create_secret": _parse_policy(os.environ.get("SECRETSHARE_RATELIMIT_CREATE"), (5, 60)),
        "access_secret": _parse_policy(os.environ.get("SECRETSHARE_RATELIMIT_ACCESS"), (20, 60)),
        "auth": _parse_policy(os.environ.get("SECRETSHARE_RATELIMIT_AUTH"), (10, 15 * 60)),
        "api": _parse_policy(os.environ.get("SECRETSHARE_RATELIMIT_API"), (100, 15 * 60)),
    }
    USER_RATELIMIT_MAX = int(os.environ.get("SECRETSHARE_USER_RATELIMIT_MAX", 50))
    USER_RATELIMIT_WINDOW = int(os.environ.get("SECRETSHARE_USER_RATELIMIT_WINDOW", 60 * 60))

    # Encryption at rest (AES-256-GCM)
    ENCRYPTION_KEY = os.environ.get("SECRETSHARE_ENCRYPTION_KEY")
    ENCRYPTION_KEY_ID = int(os.environ.get("SECRETSHARE_ENCRYPTION_KEY_ID", 1))
    ENCRYPTION_RETIRED_KEYS = _retired_keys()

    # Secrets
    SECRET_ID_LENGTH = int(os.environ.get("SECRETSHARE_SECRET_ID_LENGTH", 12))
    SECRET_MAX_LENGTH = int(os.environ.get("SECRETSHARE_SECRET_MAX_LENGTH", 64 * 1024))
    SECRET_PREVIEW_LENGTH = 50
    NOTIFICATION_PREVIEW_LENGTH = 20

    # Burn notifications
    SMTP_HOST = os.environ.get("SECRETSHARE_SMTP_HOST")
    SMTP_PORT = int(os.environ.get("SECRETSHARE_SMTP_PORT", 587))
    SMTP_USE_TLS = _env_flag("SECRETSHARE_SMTP_TLS", "true")
    SMTP_USER = os.environ.get("SECRETSHARE_SMTP_USER", "")
    SMTP_PASSWORD = os.environ.get("SECRETSHARE_SMTP_PASSWORD", "")
    SMTP_FROM = os.environ.get("SECRETSHARE_SMTP_FROM") or SMTP_USER
    SMTP_TIMEOUT = float(os.environ.get("SECRETSHARE_SMTP_TIMEOUT", 10))
    NOTIFICATION_WORKERS = int(os.environ.get("SECRETSHARE_NOTIFICATION_WORKERS", 2))
    NOTIFICATION_MAX_PENDING = int(os.environ.get("SECRETSHARE_NOTIFICATION_MAX_PENDING", 100))

    LOG_LEVEL = os.environ.get("SECRETSHARE_LOG_LEVEL", "INFO")
    APP_TITLE = os.environ.get("SECRETSHARE_APP_TITLE", "SecretShare")
    APP_VERSION = os.environ.get("SECRETSHARE_APP_VERSION", "1.0.0")
    LANGUAGES = {"en": "English", "el": "Ελληνικά"}
    BABEL_DEFAULT_LOCALE = "en"
    # Flask-Babel resolves this relative to app.root_path; keep it to the translations folder at repo root.
    BABEL_TRANSLATION_DIRECTORIES = "translations"
    ALLOW_USER_REGISTRATIONS = _env_flag("SECRETSHARE_ALLOW_USER_REGISTRATIONS", "true")
