"""Base connector interface for story sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List

from aginews.retry import RetryPolicy

if TYPE_CHECKING:
    from aginews.connectors.schemas import ExtractedStory
    from aginews.storage.models import Source


class SourceError(Exception):
    """A source could not be scraped or queried (transient, per-source)."""


class BaseConnector(ABC):
    """Abstract base for source connectors.

    Subclasses implement fetch() for a single attempt; the scraper applies
    ``retry_policy`` around it.
    """

    retry_policy: RetryPolicy = RetryPolicy.single_attempt()

    def check_ready(self) -> None:
        """Raise ConfigError if a credential this connector needs is missing."""

    @abstractmethod
    async def fetch(self, source: "Source") -> List["ExtractedStory"]:
        """Fetch stories from the source.

        Returns:
            ExtractedStory records in source order. Title/url may still be
            empty; the scraper drops those during normalization.
        """
        ...
