"""Outbound messages: SMTP delivery, a log-only fallback and fire-and-forget dispatch."""

from __future__ import annotations

import logging
import smtplib
import threading
from email.message import EmailMessage

from edublog.errors import DeliveryFailure

logger = logging.getLogger(__name__)


class Notifier:
    def send(self, recipient: str, subject: str, body: str) -> None:
        raise NotImplementedError


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "SmtpNotifier":
        return cls(
            config["MAIL_HOST"],
            config["MAIL_PORT"],
            sender=config["MAIL_FROM"],
            username=config["MAIL_USERNAME"],
            password=config["MAIL_PASSWORD"],
            use_tls=config["MAIL_USE_TLS"],
            timeout=config["MAIL_TIMEOUT"],
        )

    def send(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls()
                    server.ehlo()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(f"SMTP delivery to {recipient} failed") from exc
        logger.info("Email sent: %s", recipient)


class LogNotifier(Notifier):
    """Used when no SMTP host is configured; the message lands in the log."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info("Mail to %s (%s):\n%s", recipient, subject, body)


def notifier_from_config(config) -> Notifier:
    if config.get("MAIL_HOST"):
        return SmtpNotifier.from_config(config)
    logger.info("MAIL_HOST not configured; outgoing mail is logged only")
    return LogNotifier()


def _deliver(notifier: Notifier, recipient: str, subject: str, body: str) -> None:
    try:
        notifier.send(recipient, subject, body)
    except DeliveryFailure:
        logger.exception("Failed to send email to %s", recipient)
    except Exception:
        logger.exception("Unexpected error while sending email to %s", recipient)


def dispatch(
    notifier: Notifier, recipient: str, subject: str, body: str, *, background: bool = True
) -> None:
    """Send without blocking the caller; delivery errors are logged only."""
    if not background:
        _deliver(notifier, recipient, subject, body)
        return
    worker = threading.Thread(
        target=_deliver,
        args=(notifier, recipient, subject, body),
        name="mail-dispatch",
        daemon=True,
    )
    worker.start()
