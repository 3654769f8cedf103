"""Outbound notifications.

The Notifier contract is fire-and-forget: ``send`` never raises. Delivery
failures are logged and counted, nothing more.

- SmtpNotifier: plain-text mail over SMTP. smtplib calls run in
  asyncio.to_thread() to avoid blocking the event loop; transient SMTP and
  socket errors are retried with tenacity exponential backoff.
- LogNotifier: logs the message instead of sending it (development).
"""

from __future__ import annotations

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.meetroom.config import Settings
from src.meetroom.core.monitoring import notifications_total

logger = structlog.get_logger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Dropped connections and socket errors are retried; SMTP refusals are not."""
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return True
    return isinstance(exc, OSError) and not isinstance(exc, smtplib.SMTPException)


class Notifier(ABC):
    """Deliver a message to one address. Must not raise."""

    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> None:
        ...


class LogNotifier(Notifier):
    """Notifier that only logs. Used when no SMTP host is configured."""

    async def send(self, address: str, subject: str, body: str) -> None:
        logger.info("notify.logged", to=address, subject=subject, body=body)
        notifications_total.labels(status="logged").inc()


class SmtpNotifier(Notifier):
    """Send plain-text mail through an SMTP relay.

    Args:
        host: SMTP relay host.
        port: SMTP port (587 for STARTTLS).
        sender: From address.
        username: Optional login user.
        password: Optional login password.
        use_tls: Issue STARTTLS before login.
        max_attempts: Total delivery attempts for transient failures.
        timeout: Socket timeout in seconds per attempt.
        backoff: Exponential backoff multiplier in seconds.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        max_attempts: int = 3,
        timeout: float = 10.0,
        backoff: float = 1.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._max_attempts = max(1, max_attempts)
        self._timeout = timeout
        self._backoff = backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpNotifier:
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            sender=settings.MAIL_FROM,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            max_attempts=settings.NOTIFY_MAX_ATTEMPTS,
        )

    def _build_message(self, address: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = address
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as client:
            if self._use_tls:
                client.starttls()
            if self._username:
                client.login(self._username, self._password)
            client.send_message(msg)

    async def _deliver_with_retry(self, msg: EmailMessage) -> None:
        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async def _attempt() -> None:
            await asyncio.to_thread(self._deliver, msg)

        await _attempt()

    async def send(self, address: str, subject: str, body: str) -> None:
        try:
            msg = self._build_message(address, subject, body)
            await self._deliver_with_retry(msg)
        except Exception:
            logger.warning("notify.failed", to=address, subject=subject, exc_info=True)
            notifications_total.labels(status="failed").inc()
            return
        logger.info("notify.sent", to=address, subject=subject)
        notifications_total.labels(status="sent").inc()


def build_notifier(settings: Settings) -> Notifier:
    """SMTP when a host is configured, log-only otherwise."""
    if settings.SMTP_HOST:
        return SmtpNotifier.from_settings(settings)
    return LogNotifier()
