"""
Outbound email transports. EMAIL_PROVIDER picks one:

  development  log the email, return a dev_ message id (default; nothing leaves the machine)
  smtp         SMTP with STARTTLS (SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD). Gmail needs an App Password.
  sendgrid     SendGrid v3 mail/send over HTTPS (SENDGRID_API_KEY)

Every transport either returns a DeliveryReceipt or raises TransportError; timeouts raise
TransportTimeoutError. build_transport raises TransportConfigurationError for unusable config.
"""
import logging
import smtplib
import socket
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid, parseaddr
from typing import Protocol

import httpx

from app.config import Settings
from app.core.errors import TransportConfigurationError, TransportError, TransportTimeoutError

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class DeliveryReceipt:
    message_id: str
    provider: str


class EmailTransport(Protocol):
    name: str

    def send(self, message: OutboundEmail) -> DeliveryReceipt: ...


class DevelopmentTransport:
    name = "development"

    def send(self, message: OutboundEmail) -> DeliveryReceipt:
        logger.info("[DEV MODE] Email would be sent to %s: %s (%s chars)", message.to, message.subject, len(message.html))
        return DeliveryReceipt(message_id=f"dev_{int(time.time() * 1000)}", provider=self.name)


class SmtpTransport:
    name = "smtp"

    def __init__(self, host: str, port: int, user: str, password: str, from_addr: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_addr = from_addr
        self.timeout = timeout

    def send(self, message: OutboundEmail) -> DeliveryReceipt:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.from_addr
        msg["To"] = message.to
        message_id = make_msgid(domain=self.host)
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(message.text, "plain"))
        msg.attach(MIMEText(message.html, "html"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.user, [message.to], msg.as_string())
        except (socket.timeout, TimeoutError) as e:
            raise TransportTimeoutError(f"SMTP timed out after {self.timeout}s") from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP send failed: {e}") from e
        logger.debug("SMTP accepted message %s for %s", message_id, message.to)
        return DeliveryReceipt(message_id=message_id, provider=self.name)


class SendGridTransport:
    name = "sendgrid"

    def __init__(self, api_key: str, from_addr: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.api_key = api_key
        self.from_addr = from_addr
        self.timeout = timeout
        self._client = client

    def _payload(self, message: OutboundEmail) -> dict:
        from_name, from_email = parseaddr(self.from_addr)
        sender = {"email": from_email or self.from_addr}
        if from_name:
            sender["name"] = from_name
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": sender,
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }

    def _post(self, client: httpx.Client, message: OutboundEmail) -> httpx.Response:
        return client.post(
            SENDGRID_SEND_URL,
            json=self._payload(message),
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def send(self, message: OutboundEmail) -> DeliveryReceipt:
        try:
            if self._client is not None:
                resp = self._post(self._client, message)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = self._post(client, message)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"SendGrid timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"SendGrid request failed: {e}") from e
        if resp.status_code not in (200, 202):
            raise TransportError(f"SendGrid returned {resp.status_code}: {resp.text[:300]}")
        message_id = resp.headers.get("x-message-id") or f"sendgrid_{int(time.time() * 1000)}"
        return DeliveryReceipt(message_id=message_id, provider=self.name)


def build_transport(settings: Settings) -> EmailTransport:
    """Transport for settings.email_provider. Raises TransportConfigurationError when unusable."""
    provider = settings.email_provider or "development"
    if provider == "development":
        return DevelopmentTransport()
    if provider == "smtp":
        if not settings.smtp_user or not settings.smtp_password:
            raise TransportConfigurationError("EMAIL_PROVIDER=smtp requires SMTP_USER and SMTP_PASSWORD")
        return SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_addr=settings.email_from,
            timeout=settings.transport_timeout_seconds,
        )
    if provider == "sendgrid":
        if not settings.sendgrid_api_key:
            raise TransportConfigurationError("EMAIL_PROVIDER=sendgrid requires SENDGRID_API_KEY")
        return SendGridTransport(
            api_key=settings.sendgrid_api_key,
            from_addr=settings.email_from,
            timeout=settings.transport_timeout_seconds,
        )
    raise TransportConfigurationError(
        f"Invalid EMAIL_PROVIDER {provider!r}. Use 'development', 'smtp' or 'sendgrid'"
    )
