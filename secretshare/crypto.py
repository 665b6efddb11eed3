"""
Encryption at rest for secret text.

Stored format (one JSON string per record):
    {"v": <key id>, "encrypted": <hex>, "iv": <hex>, "tag": <hex>}

AES-256-GCM, fresh 96-bit IV per call, 128-bit tag. Any stored value that
does not parse as that structure is legacy plaintext and is returned as-is.

Never log plaintext, ciphertext or key material. Only key ids.
"""
import base64
import binascii
import json
import logging
import os
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError, DecryptionFailure

logger = logging.getLogger("secretshare.crypto")

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12
TAG_LENGTH = 16
SELF_TEST_PROBE = "This is a test secret for validation"


@dataclass(frozen=True)
class StructuredCiphertext:
    key_id: int
    encrypted: str
    iv: str
    tag: str

    def serialize(self) -> str:
        return json.dumps(
            {"v": self.key_id, "encrypted": self.encrypted, "iv": self.iv, "tag": self.tag},
            separators=(",", ":"),
        )


@dataclass(frozen=True)
class LegacyPlaintext:
    text: str


def parse_stored(stored: str) -> StructuredCiphertext | LegacyPlaintext:
    """Classify a stored value without raising.

    Records written before the key id was added carry no ``v`` and are read
    with key id 1.
    """
    try:
        data = json.loads(stored)
    except (TypeError, ValueError):
        return LegacyPlaintext(stored)
    if not isinstance(data, dict):
        return LegacyPlaintext(stored)
    fields = [data.get(name) for name in ("encrypted", "iv", "tag")]
    if not all(isinstance(value, str) for value in fields):
        return LegacyPlaintext(stored)
    key_id = data.get("v", 1)
    if not isinstance(key_id, int) or isinstance(key_id, bool):
        return LegacyPlaintext(stored)
    return StructuredCiphertext(key_id, *fields)


def parse_key(raw: str) -> bytes:
    """Decode a 32-byte key given as 64 hex chars or 44 base64 chars."""
    raw = raw.strip()
    try:
        if len(raw) == KEY_LENGTH * 2:
            key = bytes.fromhex(raw)
        elif len(raw) == 44:
            key = base64.b64decode(raw, validate=True)
        else:
            key = b""
    except (ValueError, binascii.Error) as exc:
        raise ConfigurationError("Encryption key is not valid hex or base64") from exc
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            "Encryption key must be 32 bytes (64 hex chars or 44 base64 chars)"
        )
    return key


def generate_key() -> str:
    """Return a new random key as hex, for operators."""
    return secrets.token_bytes(KEY_LENGTH).hex()


class SecretCodec:
    """AES-256-GCM codec with versioned keys.

    ``keys`` maps key id to raw key bytes; ``active_key_id`` selects the key
    used by :meth:`encrypt`. Every other key is kept for decryption only.
    """

    def __init__(self, keys: dict[int, bytes], active_key_id: int, self_test: bool = True):
        if active_key_id not in keys:
            raise ConfigurationError(f"Active key id {active_key_id} has no key")
        for key_id, key in keys.items():
            if len(key) != KEY_LENGTH:
                raise ConfigurationError(f"Key {key_id} must be {KEY_LENGTH} bytes")
        self._ciphers = {key_id: AESGCM(key) for key_id, key in keys.items()}
        self.active_key_id = active_key_id
        self.healthy = self.validate() if self_test else True

    @classmethod
    def from_config(cls, config) -> "SecretCodec":
        active_id = int(config.get("ENCRYPTION_KEY_ID", 1))
        raw_key = config.get("ENCRYPTION_KEY")
        keys = {
            int(key_id): parse_key(value)
            for key_id, value in (config.get("ENCRYPTION_RETIRED_KEYS") or {}).items()
        }
        if raw_key:
            keys[active_id] = parse_key(raw_key)
        else:
            logger.warning(
                "WARNING: No SECRETSHARE_ENCRYPTION_KEY configured. Using a generated key; "
                "every stored secret becomes unreadable after a restart. "
                "Do not run like this in production."
            )
            keys[active_id] = os.urandom(KEY_LENGTH)
        logger.debug("Loaded %d encryption key(s), active key id %s", len(keys), active_id)
        return cls(keys, active_id)

    @property
    def key_ids(self) -> list[int]:
        return sorted(self._ciphers)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._ciphers[self.active_key_id].encrypt(iv, plaintext.encode("utf-8"), None)
        record = StructuredCiphertext(
            key_id=self.active_key_id,
            encrypted=sealed[:-TAG_LENGTH].hex(),
            iv=iv.hex(),
            tag=sealed[-TAG_LENGTH:].hex(),
        )
        return record.serialize()

    def decrypt(self, stored: str) -> str:
        parsed = parse_stored(stored)
        if isinstance(parsed, LegacyPlaintext):
            logger.warning(
                "Legacy plaintext secret detected; run `flask rotate-keys` to encrypt stored data"
            )
            return parsed.text
        return self._open(parsed)

    def _open(self, record: StructuredCiphertext) -> str:
        cipher = self._ciphers.get(record.key_id)
        if cipher is None:
            logger.error("No encryption key with id %s is configured", record.key_id)
            raise DecryptionFailure()
        try:
            iv = bytes.fromhex(record.iv)
            tag = bytes.fromhex(record.tag)
            encrypted = bytes.fromhex(record.encrypted)
        except ValueError as exc:
            raise DecryptionFailure() from exc
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionFailure()
        try:
            plaintext = cipher.decrypt(iv, encrypted + tag, None)
        except InvalidTag as exc:
            logger.warning("Authentication tag mismatch for key id %s", record.key_id)
            raise DecryptionFailure() from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailure() from exc

    def needs_rotation(self, stored: str) -> bool:
        parsed = parse_stored(stored)
        return isinstance(parsed, LegacyPlaintext) or parsed.key_id != self.active_key_id

    def reencrypt(self, stored: str) -> str:
        """Re-encrypt a stored value (legacy or older key) under the active key."""
        return self.encrypt(self.decrypt(stored))

    def validate(self) -> bool:
        try:
            ok = self.decrypt(self.encrypt(SELF_TEST_PROBE)) == SELF_TEST_PROBE
        except DecryptionFailure:
            ok = False
        if ok:
            logger.info("Encryption validation successful")
        else:
            logger.error(
                "Encryption validation failed! Check your SECRETSHARE_ENCRYPTION_KEY setting."
            )
        return ok
