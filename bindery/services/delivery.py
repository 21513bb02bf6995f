from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from bindery.services.errors import DeliveryError

LOGGER = logging.getLogger("bindery.delivery")

IMPLICIT_TLS_PORT = 465


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    maintype: str = "application"
    subtype: str = "epub+zip"


class Delivery(Protocol):
    def send(
        self,
        *,
        to_address: str,
        subject: str,
        body_text: str,
        attachment: Attachment,
    ) -> None:
        ...


class SmtpDelivery:
    def __init__(
        self,
        *,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_address: str | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_address = from_address or username
        self._timeout_seconds = max(1.0, timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self._host) and bool(self._from_address)

    def send(
        self,
        *,
        to_address: str,
        subject: str,
        body_text: str,
        attachment: Attachment,
    ) -> None:
        if not self.configured:
            raise DeliveryError("SMTP delivery is not configured.")
        assert self._host is not None
        assert self._from_address is not None

        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body_text)
        message.add_attachment(
            attachment.content,
            maintype=attachment.maintype,
            subtype=attachment.subtype,
            filename=attachment.filename,
        )

        context = ssl.create_default_context()
        try:
            if self._port == IMPLICIT_TLS_PORT:
                with smtplib.SMTP_SSL(
                    self._host, self._port, timeout=self._timeout_seconds, context=context
                ) as server:
                    self._login_and_send(server, message)
            else:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as server:
                    server.ehlo()
                    server.starttls(context=context)
                    server.ehlo()
                    self._login_and_send(server, message)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.warning(
                "smtp delivery failed host=%s port=%s error_type=%s",
                self._host,
                self._port,
                type(exc).__name__,
            )
            raise DeliveryError(f"smtp_error:{type(exc).__name__}") from exc

        LOGGER.info(
            "smtp delivery sent attachment=%s size_bytes=%s",
            attachment.filename,
            len(attachment.content),
        )

    def verify(self) -> bool:
        """Open and authenticate a connection without sending anything."""
        if not self.configured:
            return False
        assert self._host is not None
        try:
            if self._port == IMPLICIT_TLS_PORT:
                with smtplib.SMTP_SSL(
                    self._host, self._port, timeout=self._timeout_seconds
                ) as server:
                    self._login(server)
            else:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as server:
                    server.starttls(context=ssl.create_default_context())
                    self._login(server)
        except (smtplib.SMTPException, OSError):
            LOGGER.warning("smtp connection check failed host=%s", self._host, exc_info=True)
            return False
        LOGGER.info("smtp connection verified host=%s", self._host)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self._username and self._password:
            server.login(self._username, self._password)

    def _login_and_send(self, server: smtplib.SMTP, message: EmailMessage) -> None:
        self._login(server)
        server.send_message(message)
