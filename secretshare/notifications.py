"""Burn notifications.

Delivery is fire-and-forget: jobs run on a small thread pool, every failure is
logged and swallowed, and nothing flows back into the request that triggered
them.
"""
import logging
import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Callable, ContextManager

from .extensions import db
from .models import User

logger = logging.getLogger("secretshare.notifications")


@dataclass(frozen=True)
class BurnNotification:
    secret_id: str
    owner_email: str
    viewed_at: datetime
    viewer_ip: str | None = None
    preview: str | None = None


class BaseNotifier:
    def notify_burn(self, notification: BurnNotification) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class LogNotifier(BaseNotifier):
    """Used when no SMTP server is configured."""

    def notify_burn(self, notification: BurnNotification) -> bool:
        logger.info(
            "Secret burn notification (email not configured) secret=%s viewed_at=%s ip=%s",
            notification.secret_id,
            notification.viewed_at.isoformat(),
            notification.viewer_ip,
        )
        return False


class SmtpNotifier(BaseNotifier):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        use_tls: bool = True,
        timeout: float = 10,
        app_title: str = "SecretShare",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls
        self.timeout = timeout
        self.app_title = app_title

    @classmethod
    def from_config(cls, config) -> "SmtpNotifier":
        return cls(
            host=config["SMTP_HOST"],
            port=config.get("SMTP_PORT", 587),
            username=config.get("SMTP_USER", ""),
            password=config.get("SMTP_PASSWORD", ""),
            sender=config.get("SMTP_FROM", ""),
            use_tls=config.get("SMTP_USE_TLS", True),
            timeout=config.get("SMTP_TIMEOUT", 10),
            app_title=config.get("APP_TITLE", "SecretShare"),
        )

    def build_message(self, notification: BurnNotification) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"Your secret has been viewed - {self.app_title}"
        msg["From"] = self.sender
        msg["To"] = notification.owner_email
        lines = [
            f"SECRET VIEWED & DESTROYED - {self.app_title}",
            "",
            "Your secret has been accessed and is no longer available.",
            "",
            "View details:",
            f"- Secret ID: {notification.secret_id}",
            f"- Viewed at: {notification.viewed_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        ]
        if notification.viewer_ip:
            lines.append(f"- Viewer IP: {notification.viewer_ip}")
        if notification.preview:
            lines.append(f"- Secret preview: {notification.preview}...")
        lines += [
            "",
            "Your secret was configured for one-time access and has been viewed by someone "
            "with the link. If you did not expect this, only share links with intended "
            "recipients and consider adding a password next time.",
            "",
            "This is an automated message.",
        ]
        msg.set_content("\n".join(lines))
        return msg

    def notify_burn(self, notification: BurnNotification) -> bool:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(self.build_message(notification))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send secret burn notification: %s", exc)
            return False
        logger.info("Secret burn notification sent secret=%s", notification.secret_id)
        return True


class NotificationDispatcher:
    """Runs burn notifications off the request path.

    ``resolve_owner_email`` maps an owner id to an address (or None to skip);
    ``context_factory`` wraps each job, e.g. ``app.app_context``. At most
    ``max_pending`` jobs are queued or running; further bursts are dropped.
    """

    def __init__(
        self,
        notifier: BaseNotifier,
        resolve_owner_email: Callable[[int], str | None],
        max_workers: int = 2,
        max_pending: int = 100,
        context_factory: Callable[[], ContextManager] | None = None,
    ):
        self.notifier = notifier
        self.resolve_owner_email = resolve_owner_email
        self.context_factory = context_factory or nullcontext
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="burn-notify")
        self.slots = threading.BoundedSemaphore(max_pending)

    def dispatch_burn(
        self,
        secret_id: str,
        owner_id,
        viewed_at: datetime,
        viewer_ip: str | None = None,
        preview: str | None = None,
    ) -> Future | None:
        if not self.slots.acquire(blocking=False):
            logger.warning("Notification queue is full; dropping burn notification for %s", secret_id)
            return None
        try:
            future = self.executor.submit(self._run, secret_id, owner_id, viewed_at, viewer_ip, preview)
        except RuntimeError:
            self.slots.release()
            logger.warning("Notification pool is shut down; dropping burn notification for %s", secret_id)
            return None
        future.add_done_callback(lambda _: self.slots.release())
        return future

    def _run(self, secret_id, owner_id, viewed_at, viewer_ip, preview) -> bool:
        try:
            with self.context_factory():
                email = self.resolve_owner_email(owner_id)
                if not email:
                    logger.debug("No notification address for owner of %s", secret_id)
                    return False
                return self.notifier.notify_burn(
                    BurnNotification(
                        secret_id=secret_id,
                        owner_email=email,
                        viewed_at=viewed_at,
                        viewer_ip=viewer_ip,
                        preview=preview,
                    )
                )
        except Exception:
            logger.exception("Failed to send burn notification for %s", secret_id)
            return False

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


def resolve_owner_email(owner_id) -> str | None:
    user = db.session.get(User, owner_id)
    if not user or not user.notifications_enabled:
        return None
    return user.email


def create_dispatcher(app) -> NotificationDispatcher:
    if app.config.get("SMTP_HOST"):
        notifier: BaseNotifier = SmtpNotifier.from_config(app.config)
    else:
        app.logger.info("SMTP not configured; burn notifications will only be logged")
        notifier = LogNotifier()
    return NotificationDispatcher(
        notifier,
        resolve_owner_email,
        max_workers=app.config.get("NOTIFICATION_WORKERS", 2),
        max_pending=app.config.get("NOTIFICATION_MAX_PENDING", 100),
        context_factory=app.app_context,
    )
