"""Delivery backends for password reset links."""

from __future__ import annotations

import json
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage

import redis
from redis.exceptions import RedisError

from .config import Settings
from .domain.contracts import Notifier
from .domain.errors import NotificationError

logger = logging.getLogger(__name__)

RESET_SUBJECT = "Password Reset Request"


def render_reset_body(reset_link: str) -> str:
    return (
        "A password reset was requested for your account.\n\n"
        f"Use this link to choose a new password: {reset_link}\n\n"
        "If you did not request a reset you can ignore this message."
    )


class LoggingNotifier:
    """Development notifier that records that a link was issued without revealing it."""

    def send(self, email: str, reset_link: str) -> None:
        logger.info("reset link issued (delivery disabled, backend=log)")


class SmtpNotifier:
    """Send reset links directly through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout

    def build_message(self, email: str, reset_link: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = email
        message["Subject"] = RESET_SUBJECT
        message.set_content(render_reset_body(reset_link))
        return message

    def send(self, email: str, reset_link: str) -> None:
        message = self.build_message(email, reset_link)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
                if self._username:
                    conn.starttls()
                    conn.login(self._username, self._password)
                conn.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError("smtp delivery failed") from exc


class RedisQueueNotifier:
    """Hand reset deliveries to an external mail worker through a Redis list."""

    def __init__(self, client: redis.Redis, *, queue_key: str) -> None:
        self._client = client
        self._queue_key = queue_key

    def send(self, email: str, reset_link: str) -> None:
        job = {
            "to": email,
            "subject": RESET_SUBJECT,
            "body": render_reset_body(reset_link),
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._client.rpush(self._queue_key, json.dumps(job))
        except RedisError as exc:
            raise NotificationError("reset delivery queue unavailable") from exc


def build_notifier(settings: Settings) -> Notifier:
    """Instantiate the configured notifier backend, falling back to logging-only delivery."""
    if settings.notifier_backend == "redis" and settings.redis_url:
        client = redis.from_url(
            settings.redis_url,
            socket_timeout=settings.notifier_timeout_seconds,
            socket_connect_timeout=settings.notifier_timeout_seconds,
        )
        logger.info("reset notifier configured for redis queue %s", settings.reset_queue_key)
        return RedisQueueNotifier(client, queue_key=settings.reset_queue_key)

    if settings.notifier_backend == "smtp":
        logger.info("reset notifier configured for smtp relay %s:%s", settings.smtp_host, settings.smtp_port)
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_sender,
            username=settings.smtp_user,
            password=settings.smtp_password,
            timeout=settings.notifier_timeout_seconds,
        )

    if settings.notifier_backend not in ("log", ""):
        logger.warning(
            "notifier backend %r is not usable, falling back to log-only delivery",
            settings.notifier_backend,
        )
    return LoggingNotifier()
