from datetime import datetime, timedelta, timezone
from flask_login import UserMixin
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from .extensions import db, login_manager


ph = PasswordHasher()


def utcnow() -> datetime:
    """Naive UTC; every stored timestamp follows this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120))
    password_hash = db.Column(db.String(255), nullable=False)
    notifications_enabled = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login_at = db.Column(db.DateTime)
    failed_attempts = db.Column(db.Integer, default=0)
    locked_until = db.Column(db.DateTime)

    secrets = db.relationship("Secret", backref="owner", lazy="dynamic", cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = hash_password(password)

    def check_password(self, password: str) -> bool:
        if self.locked_until and self.locked_until > utcnow():
            return False
        return verify_password(self.password_hash, password)

    def mark_failed_login(self) -> None:
        self.failed_attempts = (self.failed_attempts or 0) + 1
        if self.failed_attempts >= 5:
            self.locked_until = utcnow() + timedelta(minutes=5)

    def reset_failures(self) -> None:
        self.failed_attempts = 0
        self.locked_until = None


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Secret(db.Model):
    __tablename__ = "secrets"
    id = db.Column(db.String(32), primary_key=True)
    ciphertext = db.Column(db.Text, nullable=False)
    password_hash = db.Column(db.String(255))
    expires_at = db.Column(db.DateTime, index=True)
    one_time_access = db.Column(db.Boolean, nullable=False, default=True)
    is_viewed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
