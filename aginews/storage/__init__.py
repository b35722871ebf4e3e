"""Storage layer - SQLite in WAL mode with versioned migrations."""

from aginews.storage.db import DatabaseManager
from aginews.storage.models import (
    Newsletter,
    NewsletterSend,
    ScrapeSummary,
    Source,
    SourceResult,
    Story,
    Subscriber,
)

__all__ = [
    "DatabaseManager",
    "Newsletter",
    "NewsletterSend",
    "ScrapeSummary",
    "Source",
    "SourceResult",
    "Story",
    "Subscriber",
]
