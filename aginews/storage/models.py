"""Data models for the AGI News storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

SOURCE_TYPE_WEB = "web"
SOURCE_TYPE_SOCIAL = "social"

NEWSLETTER_DRAFT = "draft"
NEWSLETTER_SENT = "sent"

SEND_SENT = "sent"
SEND_FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Source:
    """A configured origin (website or social profile) polled for stories."""

    id: Optional[int]
    name: str
    url: str
    identifier: str
    type: str = SOURCE_TYPE_WEB
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> Source:
        """Create a Source from a config.yaml ``sources`` entry."""
        from aginews.connectors.social import is_social_url

        url = cfg["url"]
        default_type = SOURCE_TYPE_SOCIAL if is_social_url(url) else SOURCE_TYPE_WEB
        return cls(
            id=None,
            name=cfg.get("name") or url,
            url=url,
            identifier=cfg.get("identifier") or url,
            type=cfg.get("type") or default_type,
            is_active=bool(cfg.get("is_active", True)),
        )

    def to_row(self) -> tuple:
        now = utcnow()
        return (
            self.name,
            self.url,
            self.identifier,
            self.type,
            int(self.is_active),
            (self.created_at or now).isoformat(),
            (self.updated_at or now).isoformat(),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Source:
        return cls(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            identifier=row["identifier"],
            type=row.get("type") or SOURCE_TYPE_WEB,
            is_active=bool(row.get("is_active", 1)),
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )


@dataclass
class Story:
    """A single normalized news item."""

    title: str
    url: str
    source_id: int
    content: str = ""
    summary: str = ""
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return bool(self.title and self.title.strip() and self.url and self.url.strip())

    def to_row(self) -> tuple:
        now = utcnow()
        return (
            self.title,
            self.url,
            self.source_id,
            self.content or "",
            self.summary or "",
            (self.created_at or now).isoformat(),
            (self.updated_at or now).isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source_id": self.source_id,
            "content": self.content,
            "summary": self.summary,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Story:
        return cls(
            id=row.get("id"),
            title=row["title"],
            url=row["url"],
            source_id=row["source_id"],
            content=row.get("content") or "",
            summary=row.get("summary") or "",
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )


@dataclass
class Subscriber:
    id: Optional[int]
    email: str
    name: Optional[str] = None
    is_active: bool = True
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Subscriber:
        return cls(
            id=row["id"],
            email=row["email"],
            name=row.get("name"),
            is_active=bool(row.get("is_active", 1)),
            subscribed_at=_parse_ts(row.get("subscribed_at")),
            unsubscribed_at=_parse_ts(row.get("unsubscribed_at")),
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )


@dataclass
class Newsletter:
    """A composed digest of stories for one run."""

    content: str
    id: Optional[int] = None
    status: str = NEWSLETTER_DRAFT
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    def to_row(self) -> tuple:
        return (
            self.content,
            self.status,
            (self.created_at or utcnow()).isoformat(),
            self.sent_at.isoformat() if self.sent_at else None,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Newsletter:
        return cls(
            id=row["id"],
            content=row["content"],
            status=row.get("status") or NEWSLETTER_DRAFT,
            created_at=_parse_ts(row.get("created_at")),
            sent_at=_parse_ts(row.get("sent_at")),
        )


@dataclass
class NewsletterSend:
    """Audit entry for delivering one newsletter to one subscriber."""

    newsletter_id: int
    subscriber_id: int
    status: str
    error_message: Optional[str] = None
    id: Optional[int] = None
    sent_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> NewsletterSend:
        return cls(
            id=row["id"],
            newsletter_id=row["newsletter_id"],
            subscriber_id=row["subscriber_id"],
            status=row["status"],
            error_message=row.get("error_message"),
            sent_at=_parse_ts(row.get("sent_at")),
        )


@dataclass
class SourceResult:
    """Outcome of scraping a single source."""

    source_id: Optional[int]
    source_url: str
    fetched: int = 0
    accepted: int = 0
    dropped: int = 0
    attempts: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error_message is None


@dataclass
class ScrapeSummary:
    """Aggregate result from a full scrape run."""

    results: List[SourceResult] = field(default_factory=list)
    total_fetched: int = 0
    total_accepted: int = 0
    total_dropped: int = 0
    total_errors: int = 0
    duration_seconds: float = 0.0

    def add(self, result: SourceResult) -> None:
        self.results.append(result)
        self.total_fetched += result.fetched
        self.total_accepted += result.accepted
        self.total_dropped += result.dropped
        if not result.success:
            self.total_errors += 1


# --- Helpers ---

def _parse_ts(val: Any) -> Optional[datetime]:
    """Parse a timestamp string or return None."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    try:
        from dateutil.parser import parse
        return parse(str(val))
    except (ValueError, TypeError):
        return None
