"""Persistence contract for secret records.

The store owns all concurrency control for record mutation. In particular
``conditional_mark_viewed`` is the one atomic compare-and-set that decides
which reader burns a one-time secret.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import DuplicateSecretId, StorageError
from .extensions import db
from .models import Secret


@dataclass
class SecretRecord:
    id: str
    ciphertext: str
    owner_id: int
    created_at: datetime
    password_hash: str | None = None
    expires_at: datetime | None = None
    one_time_access: bool = True
    is_viewed: bool = False

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_burned(self) -> bool:
        return self.one_time_access and self.is_viewed


class BaseSecretStore:
    def insert(self, record: SecretRecord) -> SecretRecord:  # pragma: no cover - interface
        raise NotImplementedError

    def find_by_id(self, secret_id: str) -> SecretRecord | None:  # pragma: no cover - interface
        raise NotImplementedError

    def find_all_by_owner(self, owner_id) -> list[SecretRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    def find_all(self) -> list[SecretRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    def conditional_mark_viewed(self, secret_id: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def update_ciphertext(self, secret_id: str, ciphertext: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_by_id(self, secret_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_expired_or_burned(self, now: datetime) -> int:  # pragma: no cover - interface
        raise NotImplementedError


class InMemorySecretStore(BaseSecretStore):
    def __init__(self):
        self.records: Dict[str, SecretRecord] = {}
        self.lock = threading.Lock()

    def insert(self, record: SecretRecord) -> SecretRecord:
        with self.lock:
            if record.id in self.records:
                raise DuplicateSecretId()
            self.records[record.id] = replace(record)
        return record

    def find_by_id(self, secret_id: str) -> SecretRecord | None:
        with self.lock:
            record = self.records.get(secret_id)
            return replace(record) if record else None

    def find_all_by_owner(self, owner_id) -> list[SecretRecord]:
        with self.lock:
            return [replace(r) for r in self.records.values() if r.owner_id == owner_id]

    def find_all(self) -> list[SecretRecord]:
        with self.lock:
            return [replace(r) for r in self.records.values()]

    def conditional_mark_viewed(self, secret_id: str) -> bool:
        with self.lock:
            record = self.records.get(secret_id)
            if record is None or record.is_viewed:
                return False
            record.is_viewed = True
            return True

    def update_ciphertext(self, secret_id: str, ciphertext: str) -> None:
        with self.lock:
            record = self.records.get(secret_id)
            if record is not None:
                record.ciphertext = ciphertext

    def delete_by_id(self, secret_id: str) -> None:
        with self.lock:
            self.records.pop(secret_id, None)

    def delete_expired_or_burned(self, now: datetime) -> int:
        with self.lock:
            doomed = [
                key for key, record in self.records.items()
                if record.is_expired(now) or record.is_burned()
            ]
            for key in doomed:
                del self.records[key]
        return len(doomed)


def _to_record(row: Secret) -> SecretRecord:
    return SecretRecord(
        id=row.id,
        ciphertext=row.ciphertext,
        owner_id=row.owner_id,
        created_at=row.created_at,
        password_hash=row.password_hash,
        expires_at=row.expires_at,
        one_time_access=bool(row.one_time_access),
        is_viewed=bool(row.is_viewed),
    )


class SqlAlchemySecretStore(BaseSecretStore):
    """Store backed by the Flask-SQLAlchemy session; needs an app context."""

    @contextmanager
    def _guard(self):
        try:
            yield
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateSecretId() from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError() from exc

    def insert(self, record: SecretRecord) -> SecretRecord:
        with self._guard():
            db.session.add(
                Secret(
                    id=record.id,
                    ciphertext=record.ciphertext,
                    password_hash=record.password_hash,
                    expires_at=record.expires_at,
                    one_time_access=record.one_time_access,
                    is_viewed=record.is_viewed,
                    owner_id=record.owner_id,
                    created_at=record.created_at,
                )
            )
            db.session.commit()
        return record

    def find_by_id(self, secret_id: str) -> SecretRecord | None:
        with self._guard():
            row = db.session.get(Secret, secret_id, populate_existing=True)
            return _to_record(row) if row else None

    def find_all_by_owner(self, owner_id) -> list[SecretRecord]:
        with self._guard():
            rows = Secret.query.filter_by(owner_id=owner_id).all()
            return [_to_record(row) for row in rows]

    def find_all(self) -> list[SecretRecord]:
        with self._guard():
            return [_to_record(row) for row in Secret.query.order_by(Secret.created_at).all()]

    def conditional_mark_viewed(self, secret_id: str) -> bool:
        # Single UPDATE ... WHERE is_viewed = false; the row count names the winner.
        with self._guard():
            updated = (
                Secret.query.filter(Secret.id == secret_id, Secret.is_viewed.is_(False))
                .update({Secret.is_viewed: True}, synchronize_session=False)
            )
            db.session.commit()
        return updated == 1

    def update_ciphertext(self, secret_id: str, ciphertext: str) -> None:
        with self._guard():
            Secret.query.filter_by(id=secret_id).update(
                {Secret.ciphertext: ciphertext}, synchronize_session=False
            )
            db.session.commit()

    def delete_by_id(self, secret_id: str) -> None:
        with self._guard():
            Secret.query.filter_by(id=secret_id).delete(synchronize_session=False)
            db.session.commit()

    def delete_expired_or_burned(self, now: datetime) -> int:
        with self._guard():
            deleted = Secret.query.filter(
                or_(
                    and_(Secret.expires_at.isnot(None), Secret.expires_at < now),
                    and_(Secret.one_time_access.is_(True), Secret.is_viewed.is_(True)),
                )
            ).delete(synchronize_session=False)
            db.session.commit()
        return deleted
