"""Batched, fault-tolerant newsletter delivery.

Subscribers are paged from storage and mailed one at a time. Every attempt
leaves exactly one send record; a bad address or a transport rejection is
recorded as ``failed`` and the loop moves on. Only storage failures abort
the run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

from aginews.delivery.transport import EmailTransport, OutgoingEmail, TransportError
from aginews.retry import RetryPolicy
from aginews.storage.db import DatabaseManager
from aginews.storage.models import (
    NEWSLETTER_SENT,
    SEND_FAILED,
    SEND_SENT,
    Subscriber,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_MIN_CONTENT_LENGTH = 500
DEFAULT_SUBJECT = "AGI News – Your Quick Daily Roundup"
DEFAULT_UNSUBSCRIBE_URL = "https://www.aginews.io/api/unsubscribe"

INSUFFICIENT_LENGTH_MESSAGE = "Newsletter not sent due to insufficient length."

REPORT_SENT = "sent"
REPORT_NOT_SENT = "not_sent"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class DeliveryError(Exception):
    """Delivery cannot proceed (no newsletter to attribute sends to)."""


class InvalidEmailError(ValueError):
    """Subscriber address does not look like an email address."""


@dataclass
class DeliveryReport:
    status: str
    sent: int = 0
    failed: int = 0
    newsletter_id: Optional[int] = None
    batches: int = 0
    message: str = ""
    completed_at: datetime = field(default_factory=utcnow)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def __str__(self) -> str:
        if self.status == REPORT_NOT_SENT:
            return self.message
        return (
            f"Sent newsletter {self.newsletter_id} to {self.sent} subscribers "
            f"({self.failed} failed) on {self.completed_at.isoformat()}"
        )


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise InvalidEmailError(f"Invalid email address: {email!r}")
    return email


class DeliveryEngine:
    """Send the latest newsletter to every active subscriber."""

    def __init__(
        self,
        db: DatabaseManager,
        transport: EmailTransport,
        from_addr: str,
        subject: str = DEFAULT_SUBJECT,
        unsubscribe_url: str = DEFAULT_UNSUBSCRIBE_URL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_content_length: int = DEFAULT_MIN_CONTENT_LENGTH,
        reply_to: Optional[str] = None,
        send_policy: Optional[RetryPolicy] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.db = db
        self.transport = transport
        self.from_addr = from_addr
        self.subject = subject
        self.unsubscribe_url = unsubscribe_url
        self.batch_size = batch_size
        self.min_content_length = min_content_length
        self.reply_to = reply_to
        # one attempt: failed sends are recorded, never retried within a run
        self.send_policy = send_policy or RetryPolicy.single_attempt(name="send")

    @classmethod
    def from_config(
        cls, db: DatabaseManager, transport: EmailTransport, config: Dict[str, Any]
    ) -> DeliveryEngine:
        email_cfg = config.get("email", {}) or {}
        return cls(
            db=db,
            transport=transport,
            from_addr=email_cfg.get("from") or "AGI News <news@aginews.io>",
            subject=email_cfg.get("subject") or DEFAULT_SUBJECT,
            unsubscribe_url=email_cfg.get("unsubscribe_url") or DEFAULT_UNSUBSCRIBE_URL,
            batch_size=int(email_cfg.get("batch_size") or DEFAULT_BATCH_SIZE),
            min_content_length=int(email_cfg.get("min_content_length", DEFAULT_MIN_CONTENT_LENGTH)),
            reply_to=email_cfg.get("reply_to") or None,
        )

    def unsubscribe_link(self, email: str) -> str:
        return f"{self.unsubscribe_url}?email={quote(email, safe='')}"

    def render(self, content: str, email: str) -> str:
        link = self.unsubscribe_link(email)
        return content + f'<br><br><a href="{link}">Unsubscribe</a>'

    async def deliver(self, content: str, raw_stories_context: str = "") -> DeliveryReport:
        """Mail ``content`` to all active subscribers and mark the newsletter sent."""
        if not content or len(content) <= self.min_content_length:
            logger.warning(
                "Newsletter is too short to send (%d chars). Newsletter:\n%s\nRaw stories:\n%s",
                len(content or ""), content, raw_stories_context,
            )
            return DeliveryReport(status=REPORT_NOT_SENT, message=INSUFFICIENT_LENGTH_MESSAGE)

        newsletter = await self.db.get_latest_newsletter()
        if newsletter is None or newsletter.id is None:
            raise DeliveryError("No newsletter found to attribute sends to")

        report = DeliveryReport(status=REPORT_SENT, newsletter_id=newsletter.id)
        offset = 0
        while True:
            subscribers = await self.db.get_active_subscribers_batch(offset, self.batch_size)
            if not subscribers:
                break
            report.batches += 1
            logger.info(
                "Sending newsletter %d to batch of %d subscribers (offset %d)",
                newsletter.id, len(subscribers), offset,
            )
            for subscriber in subscribers:
                if await self._send_one(newsletter.id, content, subscriber):
                    report.sent += 1
                else:
                    report.failed += 1
            if len(subscribers) < self.batch_size:
                break
            offset += self.batch_size

        await self.db.update_newsletter_status(newsletter.id, NEWSLETTER_SENT)
        report.completed_at = utcnow()
        logger.info(
            "Delivery of newsletter %d complete: %d sent, %d failed",
            newsletter.id, report.sent, report.failed,
        )
        return report

    async def _send_one(self, newsletter_id: int, content: str, subscriber: Subscriber) -> bool:
        """Send to one subscriber and record the outcome. Returns True on success."""
        assert subscriber.id is not None
        error: Optional[str] = None
        try:
            to = validate_email(subscriber.email)
            message = OutgoingEmail(
                to=to,
                subject=self.subject,
                html=self.render(content, to),
                from_addr=self.from_addr,
                reply_to=self.reply_to,
            )
            await self.send_policy.call(self.transport.send, message)
        except (InvalidEmailError, TransportError) as e:
            error = str(e)
            logger.warning("Send to subscriber %d failed: %s", subscriber.id, e)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("Unexpected error sending to subscriber %d", subscriber.id)

        if error is None:
            await self.db.record_send(newsletter_id, subscriber.id, SEND_SENT)
            logger.debug("Sent to %s", subscriber.email)
            return True
        await self.db.record_send(newsletter_id, subscriber.id, SEND_FAILED, error)
        return False
