"""
mail/client.py -- Transactional email delivery.

Two implementations share the send_email(to, subject, html_body) contract:

  PostmarkEmailClient -- posts to Postmark's /email endpoint over a pooled
      requests.Session. Any transport error, non-2xx status, or non-zero
      Postmark ErrorCode is raised as EmailSendError so callers have a single
      exception to handle (the password reset flow rolls back its token on it).

  ConsoleEmailClient -- writes the message to the log. Selected in debug mode
      when Postmark is not configured, so the reset flow works locally.

The reset email body is rendered from mail/templates/ with Jinja2.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings, get_settings

logger = logging.getLogger("gatehouse.mail")

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


class EmailSendError(Exception):
    """Raised when an email could not be handed to the provider."""


class EmailClient:
    """Interface for email delivery. Subclasses implement send_email()."""

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PostmarkEmailClient(EmailClient):
    def __init__(
        self,
        api_token: str,
        default_from: str,
        api_url: str = "https://api.postmarkapp.com/email",
        timeout: int = 10,
    ) -> None:
        self.default_from = default_from
        self.api_url = api_url
        self.timeout = timeout
        self._session = requests.Session()
        # Postmark never redirects. A redirect surfaces as TooManyRedirects.
        self._session.max_redirects = 0
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-Postmark-Server-Token": api_token,
            }
        )

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        payload = {
            "From": self.default_from,
            "To": to,
            "Subject": subject,
            "HtmlBody": html_body,
            "MessageStream": "outbound",
        }
        try:
            resp = self._session.post(self.api_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise EmailSendError(f"Postmark request failed: {e}") from e

        if resp.status_code >= 400:
            raise EmailSendError(f"Postmark returned HTTP {resp.status_code}: {_error_message(resp)}")
        try:
            error_code = resp.json().get("ErrorCode", 0)
        except ValueError:
            error_code = 0
        if error_code:
            raise EmailSendError(f"Postmark rejected the message (ErrorCode {error_code}): {_error_message(resp)}")
        logger.info("Email %r sent via Postmark", subject)

    def close(self) -> None:
        self._session.close()


class ConsoleEmailClient(EmailClient):
    def send_email(self, to: str, subject: str, html_body: str) -> None:
        logger.info("Email (not sent, console mode) to=%s subject=%r\n%s", to, subject, html_body)


def _error_message(resp: requests.Response) -> str:
    try:
        return str(resp.json().get("Message", ""))[:200]
    except ValueError:
        return resp.text[:200]


def get_email_client(settings: Settings | None = None) -> EmailClient:
    """Build the email client for the current configuration."""
    settings = settings or get_settings()
    if settings.email_enabled:
        return PostmarkEmailClient(
            settings.postmark_api_token,
            settings.postmark_default_from,
            api_url=settings.postmark_api_url,
            timeout=settings.email_timeout_seconds,
        )
    return ConsoleEmailClient()


def render_reset_password_email(reset_url: str, expires_seconds: int) -> str:
    """Return the HTML body of the password reset email."""
    template = _env.get_template("reset_password.html")
    return template.render(
        app_name="Gatehouse",
        reset_url=reset_url,
        expires_minutes=max(1, expires_seconds // 60),
    )
