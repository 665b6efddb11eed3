"""Error taxonomy shared by the core and the HTTP boundary.

Every error carries the HTTP status and the stable error code the JSON API
renders. Not-found causes (missing, expired, burned, foreign owner) all map to
the same ``NotFound`` message so callers cannot probe for existence.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ratelimit import Admission


class SecretShareError(Exception):
    status_code = 500
    code = "internal_error"
    message = "Something went wrong."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ConfigurationError(SecretShareError):
    code = "configuration_error"
    message = "Invalid configuration."


class NotFound(SecretShareError):
    status_code = 404
    code = "not_found"
    message = "Secret not found, expired, or already viewed."

    def __init__(self):
        # A single message for every cause.
        super().__init__()


class Unauthorized(SecretShareError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class PasswordRequired(SecretShareError):
    status_code = 401
    code = "password_required"
    message = "This secret is protected by a password."


class InvalidPassword(SecretShareError):
    status_code = 403
    code = "invalid_password"
    message = "Invalid password."


class ValidationError(SecretShareError):
    status_code = 400
    code = "validation_error"
    message = "Invalid input."

    def __init__(self, message: str | None = None, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class DecryptionFailure(SecretShareError):
    code = "decryption_failed"
    message = "Failed to decrypt secret - data may be corrupted or tampered with."


class StorageError(SecretShareError):
    status_code = 503
    code = "storage_unavailable"
    message = "Storage is temporarily unavailable."


class DuplicateSecretId(StorageError):
    code = "duplicate_id"
    message = "A secret with this id already exists."


class RateLimited(SecretShareError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests, please try again later."

    def __init__(self, admission: "Admission", message: str | None = None):
        super().__init__(message)
        self.admission = admission

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after"] = self.admission.retry_after
        return data

    def headers(self) -> dict[str, str]:
        admission = self.admission
        headers = {"Retry-After": str(admission.retry_after)}
        if admission.limit is not None:
            headers["X-RateLimit-Limit"] = str(admission.limit)
        headers["X-RateLimit-Remaining"] = str(admission.remaining)
        if admission.reset_at is not None:
            headers["X-RateLimit-Reset"] = admission.reset_at.isoformat()
        return headers
