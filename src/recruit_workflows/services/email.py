"""Email delivery for SEND_EMAIL actions.

`EmailService` is the contract the engine relies on: send a message and report
success or failure, plus the `{{variable}}` template rendering and address
validation helpers. Providers never raise for delivery problems; they return
a failed `EmailResult` and the action turns it into an action failure.
"""

from __future__ import annotations

import html
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

import requests

from recruit_workflows.config import EngineSettings
from recruit_workflows.errors import ConfigurationError

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_VARIABLE_RE = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True, slots=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None


@dataclass(frozen=True, slots=True)
class EmailResult:
    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None


class EmailService(ABC):
    """Abstract base class for email providers."""

    @abstractmethod
    def send_email(self, message: EmailMessage) -> EmailResult:
        """Deliver one message.

        Args:
            message: The rendered message.

        Returns:
            Delivery result. Failures are reported, not raised.
        """

    @staticmethod
    def render_template(template: str, variables: Mapping[str, object]) -> str:
        """Replace `{{name}}` placeholders; unknown placeholders are left as-is."""

        def _sub(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            value = variables[key]
            return "" if value is None else str(value)

        return _VARIABLE_RE.sub(_sub, template)

    @staticmethod
    def is_valid_email(address: str) -> bool:
        return bool(_EMAIL_RE.match(address or ""))

    @staticmethod
    def convert_to_html(text: str) -> str:
        """Plain text to a minimal HTML document: blank lines split paragraphs."""

        paragraphs = "".join(
            f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in text.split("\n\n")
        )
        return (
            '<!DOCTYPE html><html><head><meta charset="UTF-8"></head>'
            f"<body>{paragraphs}</body></html>"
        )


class SendGridEmailService(EmailService):
    """SendGrid v3 `mail/send` over HTTPS."""

    def __init__(
        self,
        *,
        api_key: str,
        from_email: str,
        from_name: str,
        reply_to: str | None = None,
        base_url: str = "https://api.sendgrid.com",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("SENDGRID_API_KEY is required for the sendgrid provider")

        self._from_email = from_email
        self._from_name = from_name
        self._reply_to = reply_to
        self._url = f"{base_url.rstrip('/')}/v3/mail/send"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "User-Agent": "recruit-workflow-engine",
            }
        )

    def _payload(self, message: EmailMessage) -> dict[str, object]:
        content = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        payload: dict[str, object] = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self._from_email, "name": self._from_name},
            "subject": message.subject,
            "content": content,
        }
        if self._reply_to:
            payload["reply_to"] = {"email": self._reply_to}
        return payload

    def send_email(self, message: EmailMessage) -> EmailResult:
        logger.info("Sending email", extra={"to": message.to, "subject": message.subject})
        try:
            resp = self._session.post(self._url, json=self._payload(message), timeout=self._timeout)
        except requests.RequestException as e:
            logger.error("Email delivery failed", extra={"to": message.to, "error": str(e)})
            return EmailResult(success=False, provider="failed", error=str(e))

        if not 200 <= resp.status_code < 300:
            error = f"SendGrid returned HTTP {resp.status_code}: {resp.text[:200]}"
            logger.error("Email delivery rejected", extra={"to": message.to, "error": error})
            return EmailResult(success=False, provider="failed", error=error)

        return EmailResult(
            success=True,
            provider="sendgrid",
            message_id=resp.headers.get("X-Message-Id"),
        )

    def close(self) -> None:
        self._session.close()


class MockEmailService(EmailService):
    """Logs messages instead of sending them. Keeps what it 'sent' for inspection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[EmailMessage] = []

    def send_email(self, message: EmailMessage) -> EmailResult:
        logger.info(
            "Mock email not delivered",
            extra={"to": message.to, "subject": message.subject, "text": message.text[:100]},
        )
        with self._lock:
            self.sent.append(message)
        return EmailResult(success=True, provider="mock", message_id=f"mock-{time.time_ns()}")


class EmailServiceFactory:
    """Factory for creating email providers."""

    @staticmethod
    def create(settings: EngineSettings) -> EmailService:
        """Create the provider selected by configuration.

        Raises:
            ConfigurationError: If SendGrid is requested without an API key.
        """
        provider = settings.email_provider
        if provider == "auto":
            provider = "sendgrid" if settings.sendgrid_api_key.strip() else "mock"
            if provider == "mock":
                logger.warning("No SENDGRID_API_KEY configured; emails will only be logged")

        logger.info("Creating email provider", extra={"provider": provider})
        if provider == "sendgrid":
            return SendGridEmailService(
                api_key=settings.sendgrid_api_key.strip(),
                from_email=settings.email_from,
                from_name=settings.email_from_name,
                reply_to=settings.email_reply_to,
                base_url=settings.sendgrid_base_url,
                timeout=settings.http_timeout_seconds,
            )
        return MockEmailService()
