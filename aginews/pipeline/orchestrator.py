"""Daily newsletter run: scrape -> save -> compose -> save -> deliver.

Any failure is logged and recorded on the PipelineResult; a run never
raises out to the scheduler, so one bad day does not stop the next.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from aginews.connectors.factory import build_connector_factory
from aginews.delivery.engine import DeliveryEngine, DeliveryReport
from aginews.digest.composer import NewsletterComposer, stories_context
from aginews.llm import ModelFallbackChain
from aginews.pipeline.clients import ClientBundle
from aginews.pipeline.scraper import SourceScraper
from aginews.storage.db import DatabaseManager
from aginews.storage.models import ScrapeSummary, Source

logger = logging.getLogger(__name__)

DEFAULT_RUN_HOUR = 14
DEFAULT_RUN_MINUTE = 0


@dataclass
class PipelineResult:
    scrape: ScrapeSummary = field(default_factory=ScrapeSummary)
    stories_saved: int = 0
    newsletter_id: Optional[int] = None
    delivery: Optional[DeliveryReport] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


class NewsletterPipeline:
    """Sequences the daily run over injected components.

    Usage:
        pipeline = NewsletterPipeline.from_config(db, build_clients(config), config)
        result = await pipeline.run()
    """

    def __init__(
        self,
        db: DatabaseManager,
        scraper: SourceScraper,
        composer: NewsletterComposer,
        delivery: DeliveryEngine,
    ) -> None:
        self.db = db
        self.scraper = scraper
        self.composer = composer
        self.delivery = delivery

    @classmethod
    def from_config(
        cls, db: DatabaseManager, clients: ClientBundle, config: Dict[str, Any]
    ) -> NewsletterPipeline:
        if clients.transport is None:
            raise ValueError("ClientBundle has no email transport")
        llm_cfg = config.get("llm", {}) or {}
        return cls(
            db=db,
            scraper=SourceScraper(build_connector_factory(clients, config)),
            composer=NewsletterComposer(
                ModelFallbackChain(clients.llm, llm_cfg.get("models") or ()),
                use_template=clients.llm.provider == "mock",
            ),
            delivery=DeliveryEngine.from_config(db, clients.transport, config),
        )

    async def run(self) -> PipelineResult:
        """Run the whole pipeline once."""
        result = PipelineResult()
        t0 = time.monotonic()
        logger.info("Starting newsletter run...")
        try:
            sources = await self.db.get_active_sources()
            stories, result.scrape = await self.scraper.scrape_with_summary(sources)

            result.stories_saved = await self.db.save_stories(stories)

            context = stories_context(stories)
            newsletter = await self.composer.compose(stories, context)
            if newsletter.content:
                result.newsletter_id = await self.db.save_newsletter(newsletter)

            result.delivery = await self.delivery.deliver(newsletter.content, context)
            logger.info("Newsletter sending result: %s", result.delivery)
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.exception("Newsletter run failed")

        result.duration_seconds = time.monotonic() - t0
        return result

    async def run_daily(
        self,
        hour: int = DEFAULT_RUN_HOUR,
        minute: int = DEFAULT_RUN_MINUTE,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Run once a day at hour:minute UTC, forever. Runs never overlap."""
        while True:
            current = now()
            next_run = next_run_at(current, hour, minute)
            wait = (next_run - current).total_seconds()
            logger.info("Next run at %s (in %.0fs)", next_run.isoformat(), wait)
            await asyncio.sleep(wait)
            await self.run()


def next_run_at(current: datetime, hour: int, minute: int) -> datetime:
    """Next UTC datetime strictly after ``current`` at hour:minute."""
    current = current.astimezone(timezone.utc)
    candidate = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= current:
        candidate += timedelta(days=1)
    return candidate


async def seed_from_config(db: DatabaseManager, config: Dict[str, Any]) -> Dict[str, int]:
    """Load ``sources`` and ``subscribers`` from config into the database."""
    counts = {"sources": 0, "subscribers": 0}
    for cfg in config.get("sources", []) or []:
        if not cfg.get("url"):
            logger.warning("Skipping source without url: %r", cfg)
            continue
        await db.upsert_source(Source.from_config(cfg))
        counts["sources"] += 1
    for sub in config.get("subscribers", []) or []:
        if isinstance(sub, str):
            sub = {"email": sub}
        if not sub.get("email"):
            continue
        await db.add_subscriber(sub["email"], sub.get("name"))
        counts["subscribers"] += 1
    logger.info("Seeded %d sources and %d subscribers", counts["sources"], counts["subscribers"])
    return counts
