"""Sequential, best-effort scraping of all active sources.

Sources are processed one at a time in the order given. A failing source
is retried according to its connector's policy, then logged and skipped;
it never aborts the batch.
"""

from __future__ import annotations

import logging
import time
from typing import List, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from aginews.connectors.base import BaseConnector
from aginews.connectors.factory import ConnectorFactory
from aginews.connectors.schemas import ExtractedStory
from aginews.storage.models import ScrapeSummary, Source, SourceResult, Story, utcnow

logger = logging.getLogger(__name__)


class SourceScraper:
    """Turns sources into normalized Story records.

    Usage:
        scraper = SourceScraper(build_connector_factory(clients, config))
        stories = await scraper.scrape(sources)
    """

    def __init__(self, connector_factory: ConnectorFactory) -> None:
        self.connector_factory = connector_factory
        self.last_summary = ScrapeSummary()

    async def scrape(self, sources: Sequence[Source]) -> List[Story]:
        stories, _ = await self.scrape_with_summary(sources)
        return stories

    async def scrape_with_summary(self, sources: Sequence[Source]) -> Tuple[List[Story], ScrapeSummary]:
        """Scrape every source; output order is source order, then result order.

        Missing connector credentials raise ConfigError before any source is fetched.
        """
        logger.info("Scraping %d sources...", len(sources))
        summary = ScrapeSummary()
        stories: List[Story] = []
        t0 = time.monotonic()

        connectors = [self.connector_factory(source) for source in sources]
        for connector in connectors:
            connector.check_ready()

        for source, connector in zip(sources, connectors):
            accepted, result = await self._scrape_source(source, connector)
            stories.extend(accepted)
            summary.add(result)

        summary.duration_seconds = time.monotonic() - t0
        self.last_summary = summary
        logger.info(
            "Scrape complete: %d fetched, %d accepted, %d dropped, %d failed sources in %.1fs",
            summary.total_fetched,
            summary.total_accepted,
            summary.total_dropped,
            summary.total_errors,
            summary.duration_seconds,
        )
        return stories, summary

    async def _scrape_source(
        self, source: Source, connector: BaseConnector
    ) -> Tuple[List[Story], SourceResult]:
        result = SourceResult(source_id=source.id, source_url=source.url)
        t0 = time.monotonic()

        async def attempt() -> List[ExtractedStory]:
            result.attempts += 1
            return await connector.fetch(source)

        try:
            raw = await connector.retry_policy.call(attempt)
        except Exception as e:
            result.error_message = str(e) or type(e).__name__
            result.duration_seconds = time.monotonic() - t0
            logger.error(
                "Source %s (%s) failed after %d attempt(s): %s",
                source.id, source.url, result.attempts, result.error_message,
            )
            return [], result

        stories = normalize_stories(raw, source)
        result.fetched = len(raw)
        result.accepted = len(stories)
        result.dropped = len(raw) - len(stories)
        result.duration_seconds = time.monotonic() - t0
        logger.info(
            "Source %s: fetched=%d, accepted=%d, dropped=%d",
            source.url, result.fetched, result.accepted, result.dropped,
        )
        return stories, result


def normalize_stories(raw_items: Sequence[ExtractedStory], source: Source) -> List[Story]:
    """Attach source id and timestamps; drop stories missing a title or url.

    Relative links are resolved against the source URL.
    """
    now = utcnow()
    stories: List[Story] = []
    for raw in raw_items:
        url = raw.url
        if url and not urlparse(url).scheme:
            url = urljoin(source.url, url)
        story = Story(
            title=raw.title,
            url=url,
            source_id=source.id or 0,
            content=raw.content,
            summary=raw.summary,
            created_at=now,
            updated_at=now,
        )
        if not story.is_valid:
            logger.debug("Dropping story without title/url from %s: %r", source.url, raw)
            continue
        stories.append(story)
    return stories

