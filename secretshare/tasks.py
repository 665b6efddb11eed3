from .lifecycle import get_secret_service


def purge_expired_secrets() -> int:
    """Delete expired and already-burned secrets. Needs an app context."""
    return get_secret_service().purge_expired()


def rotate_encryption_keys() -> dict:
    """Re-encrypt stored secrets under the active key. Needs an app context."""
    return get_secret_service().rotate_keys()
