"""Email transports: SMTP when configured, otherwise the Resend HTTP API."""

from __future__ import annotations

import asyncio
import logging
import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Protocol

import aiohttp

from aginews.config import ConfigError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class TransportError(Exception):
    """The transport rejected or failed to deliver a message."""


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    from_addr: str
    reply_to: Optional[str] = None


class EmailTransport(Protocol):
    async def send(self, message: OutgoingEmail) -> None:
        """Deliver one message or raise TransportError."""
        ...


def html_to_text(html: str) -> str:
    """Create plain text version from HTML."""
    text = re.sub(r"<(script|style)[^>]*>[\s\S]*?</\1>", "", html, flags=re.IGNORECASE)
    text = re.sub(r"<\s*br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</p\s*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


class SMTPTransport:
    """Send through an SMTP relay. smtplib is blocking, so it runs in an executor."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, message: OutgoingEmail) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = message.from_addr
        mime["To"] = message.to
        if message.reply_to:
            mime["Reply-To"] = message.reply_to
        mime.attach(MIMEText(html_to_text(message.html), "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))
        return mime

    def _send_sync(self, mime: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(mime)

    async def send(self, message: OutgoingEmail) -> None:
        mime = self._build_message(message)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, mime)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP send to {message.to} failed: {e}") from e


class ResendTransport:
    """Transactional email through the Resend REST API."""

    def __init__(self, api_key: str, api_url: str = RESEND_API_URL, timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout

    async def send(self, message: OutgoingEmail) -> None:
        payload: Dict[str, Any] = {
            "from": message.from_addr,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.api_url, json=payload, headers=headers) as resp:
                    if resp.status >= 400:
                        try:
                            body = await resp.json(content_type=None)
                        except ValueError:
                            body = None
                        detail = body.get("message") if isinstance(body, dict) else resp.reason
                        raise TransportError(
                            f"Resend rejected message to {message.to}: {resp.status} {detail}"
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Resend request for {message.to} failed: {e}") from e


def build_transport(config: Dict[str, Any]) -> EmailTransport:
    """SMTP if a host is configured, otherwise Resend; neither is a ConfigError."""
    email_cfg = config.get("email", {}) or {}
    smtp = email_cfg.get("smtp", {}) or {}
    if smtp.get("host"):
        logger.info("Using SMTP transport via %s:%s", smtp["host"], smtp.get("port", 587))
        return SMTPTransport(
            host=smtp["host"],
            port=int(smtp.get("port") or 587),
            username=smtp.get("username") or "",
            password=smtp.get("password") or "",
            use_tls=str(smtp.get("use_tls", True)).lower() not in ("0", "false", "no"),
        )
    resend = email_cfg.get("resend", {}) or {}
    if resend.get("api_key"):
        logger.info("Using Resend transport")
        return ResendTransport(api_key=resend["api_key"])
    raise ConfigError("No email transport configured: set email.smtp.host or email.resend.api_key")
