"""Secret lifecycle: create, view-and-burn, metadata, owner listing and search.

States: active -> viewed (one-time secrets only) | expired (derived from
``expires_at``) | deleted. Every not-found cause raises the same ``NotFound``.
The burn of a one-time secret is decided by the store's atomic
``conditional_mark_viewed``; this module never does read-modify-write itself.
"""
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Callable

from flask import current_app

from .crypto import SecretCodec
from .errors import (
    DecryptionFailure,
    DuplicateSecretId,
    InvalidPassword,
    NotFound,
    PasswordRequired,
    Unauthorized,
    ValidationError,
)
from .models import hash_password, utcnow, verify_password
from .notifications import NotificationDispatcher, create_dispatcher
from .store import BaseSecretStore, SecretRecord, SqlAlchemySecretStore

logger = logging.getLogger("secretshare.lifecycle")

ID_ALPHABET = string.ascii_letters + string.digits + "_-"
DECRYPTION_ERROR_PREVIEW = "[Decryption Error]"

STATUS_ACTIVE = "active"
STATUS_VIEWED = "viewed"
STATUS_EXPIRED = "expired"


def generate_secret_id(length: int = 12) -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def truncate(text: str, length: int) -> str:
    return text[:length] + "..." if len(text) > length else text


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SecretService:
    def __init__(
        self,
        store: BaseSecretStore,
        codec: SecretCodec,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
        id_length: int = 12,
        max_length: int = 64 * 1024,
        preview_length: int = 50,
        notification_preview_length: int = 20,
    ):
        self.store = store
        self.codec = codec
        self.dispatcher = dispatcher
        self.clock = clock
        self.id_length = id_length
        self.max_length = max_length
        self.preview_length = preview_length
        self.notification_preview_length = notification_preview_length

    @classmethod
    def from_config(cls, config, store, codec, dispatcher=None) -> "SecretService":
        return cls(
            store,
            codec,
            dispatcher,
            id_length=config.get("SECRET_ID_LENGTH", 12),
            max_length=config.get("SECRET_MAX_LENGTH", 64 * 1024),
            preview_length=config.get("SECRET_PREVIEW_LENGTH", 50),
            notification_preview_length=config.get("NOTIFICATION_PREVIEW_LENGTH", 20),
        )

    # -- owner operations -------------------------------------------------

    def create(
        self,
        owner_id,
        plaintext: str,
        password: str | None = None,
        expires_at: datetime | None = None,
        one_time_access: bool = True,
    ) -> dict:
        if owner_id is None:
            raise Unauthorized()
        if not isinstance(plaintext, str) or not plaintext.strip():
            raise ValidationError("Secret text is required", ["secret_text"])
        if len(plaintext) > self.max_length:
            raise ValidationError(
                f"Secret text must be at most {self.max_length} characters", ["secret_text"]
            )
        now = self.clock()
        if expires_at is not None:
            try:
                expires_at = to_naive_utc(expires_at)
            except OverflowError:
                raise ValidationError("Expiration is out of range", ["expires_at"]) from None
            if expires_at <= now:
                raise ValidationError("Expiration must be in the future", ["expires_at"])

        password_hash = hash_password(password) if password else None
        ciphertext = self.codec.encrypt(plaintext)
        for attempt in range(5):
            record = SecretRecord(
                id=generate_secret_id(self.id_length),
                ciphertext=ciphertext,
                owner_id=owner_id,
                created_at=now,
                password_hash=password_hash,
                expires_at=expires_at,
                one_time_access=bool(one_time_access),
                is_viewed=False,
            )
            try:
                self.store.insert(record)
                break
            except DuplicateSecretId:
                logger.warning("Secret id collision, regenerating (attempt %d)", attempt + 1)
        else:
            raise DuplicateSecretId()
        logger.info(
            "Secret created id=%s owner=%s one_time=%s password=%s expires_at=%s",
            record.id,
            owner_id,
            record.one_time_access,
            record.has_password,
            record.expires_at,
        )
        return {"id": record.id, "created_at": record.created_at}

    def list(self, owner_id) -> list[dict]:
        if owner_id is None:
            raise Unauthorized()
        now = self.clock()
        summaries = []
        for record in self._owned(owner_id):
            try:
                preview = truncate(self.codec.decrypt(record.ciphertext), self.preview_length)
            except DecryptionFailure:
                logger.warning("Could not decrypt secret %s for listing", record.id)
                preview = DECRYPTION_ERROR_PREVIEW
            summaries.append(self._summary(record, preview, now))
        return summaries

    def search(self, owner_id, query: str) -> list[dict]:
        if owner_id is None:
            raise Unauthorized()
        needle = (query or "").strip().lower()
        now = self.clock()
        results = []
        for record in self._owned(owner_id):
            try:
                text = self.codec.decrypt(record.ciphertext)
            except DecryptionFailure:
                continue
            if needle and needle not in text.lower() and needle not in record.id.lower():
                continue
            results.append(self._summary(record, truncate(text, self.preview_length), now))
        return results

    def stats(self, owner_id) -> dict:
        if owner_id is None:
            raise Unauthorized()
        now = self.clock()
        counts = {STATUS_ACTIVE: 0, STATUS_VIEWED: 0, STATUS_EXPIRED: 0}
        records = self.store.find_all_by_owner(owner_id)
        for record in records:
            counts[self.status_of(record, now)] += 1
        counts["total"] = len(records)
        return counts

    def delete(self, secret_id: str, owner_id) -> bool:
        if owner_id is None:
            raise Unauthorized()
        record = self.store.find_by_id(secret_id)
        if record is None or record.owner_id != owner_id:
            raise NotFound()
        self.store.delete_by_id(secret_id)
        logger.info("Secret deleted id=%s owner=%s", secret_id, owner_id)
        return True

    # -- recipient operations ---------------------------------------------

    def get(self, secret_id: str, password: str | None = None, viewer_ip: str | None = None) -> dict:
        record = self._load_viewable(secret_id, purge_expired=True)
        if record.password_hash:
            if not password:
                raise PasswordRequired()
            if not verify_password(record.password_hash, password):
                logger.info("Invalid password for secret %s", secret_id)
                raise InvalidPassword()
        plaintext = self.codec.decrypt(record.ciphertext)
        if record.one_time_access:
            if not self.store.conditional_mark_viewed(record.id):
                # Another reader burned it first.
                raise NotFound()
            logger.info("Secret burned id=%s", record.id)
            self._notify_burn(record, plaintext, viewer_ip)
        return {
            "plaintext": plaintext,
            "created_at": record.created_at,
            "one_time_access": record.one_time_access,
        }

    def get_info(self, secret_id: str) -> dict:
        record = self._load_viewable(secret_id, purge_expired=False)
        return {
            "id": record.id,
            "created_at": record.created_at,
            "expires_at": record.expires_at,
            "one_time_access": record.one_time_access,
            "has_password": record.has_password,
            "is_viewed": record.is_viewed,
        }

    # -- maintenance --------------------------------------------------------

    def purge_expired(self) -> int:
        deleted = self.store.delete_expired_or_burned(self.clock())
        logger.info("Purged %d expired or burned secret(s)", deleted)
        return deleted

    def rotate_keys(self) -> dict:
        """Re-encrypt every record not under the active key (legacy plaintext included)."""
        stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
        for record in self.store.find_all():
            stats["total"] += 1
            if not self.codec.needs_rotation(record.ciphertext):
                stats["skipped"] += 1
                continue
            try:
                self.store.update_ciphertext(record.id, self.codec.reencrypt(record.ciphertext))
            except DecryptionFailure:
                logger.error("Error rotating secret id=%s", record.id)
                stats["errors"] += 1
                continue
            stats["rotated"] += 1
        logger.info("Key rotation complete: %s", stats)
        return stats

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def status_of(record: SecretRecord, now: datetime) -> str:
        if record.is_burned():
            return STATUS_VIEWED
        if record.is_expired(now):
            return STATUS_EXPIRED
        return STATUS_ACTIVE

    def _owned(self, owner_id) -> list[SecretRecord]:
        records = self.store.find_all_by_owner(owner_id)
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def _summary(self, record: SecretRecord, preview: str, now: datetime) -> dict:
        return {
            "id": record.id,
            "preview": preview,
            "created_at": record.created_at,
            "expires_at": record.expires_at,
            "is_viewed": record.is_viewed,
            "one_time_access": record.one_time_access,
            "has_password": record.has_password,
            "status": self.status_of(record, now),
        }

    def _load_viewable(self, secret_id: str, purge_expired: bool) -> SecretRecord:
        record = self.store.find_by_id(secret_id) if secret_id else None
        if record is None:
            raise NotFound()
        if record.is_expired(self.clock()):
            if purge_expired:
                self.store.delete_by_id(record.id)
                logger.info("Expired secret removed id=%s", record.id)
            raise NotFound()
        if record.is_burned():
            raise NotFound()
        return record

    def _notify_burn(self, record: SecretRecord, plaintext: str, viewer_ip: str | None) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.dispatch_burn(
            secret_id=record.id,
            owner_id=record.owner_id,
            viewed_at=self.clock(),
            viewer_ip=viewer_ip,
            preview=plaintext[: self.notification_preview_length],
        )


def create_secret_service(app) -> SecretService:
    codec = SecretCodec.from_config(app.config)
    return SecretService.from_config(
        app.config, SqlAlchemySecretStore(), codec, create_dispatcher(app)
    )


def get_secret_service() -> SecretService:
    return current_app.extensions["secret_service"]
