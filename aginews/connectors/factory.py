"""Connector factory: pick the social or web connector for a source."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict

from aginews.connectors.base import BaseConnector
from aginews.connectors.social import (
    DEFAULT_LOOKBACK_HOURS,
    DEFAULT_MAX_RESULTS,
    SocialConnector,
    is_social_url,
)
from aginews.connectors.web import WebConnector
from aginews.connectors.firecrawl import DEFAULT_TIMEOUT_MS
from aginews.llm import ModelFallbackChain
from aginews.retry import RetryPolicy

if TYPE_CHECKING:
    from aginews.pipeline.clients import ClientBundle
    from aginews.storage.models import Source

ConnectorFactory = Callable[["Source"], BaseConnector]


def build_connector_factory(clients: "ClientBundle", config: Dict[str, Any]) -> ConnectorFactory:
    """Return a factory mapping each source to its connector.

    Sources whose URL is an X/Twitter profile use the search API; everything
    else is scraped and filtered through the LLM. Connectors are built once
    and shared across sources.
    """
    scraper_cfg = config.get("scraper", {}) or {}
    policy = RetryPolicy.fixed(
        max_attempts=scraper_cfg.get("max_attempts", 3),
        delay_seconds=scraper_cfg.get("retry_delay_seconds", 5),
        sleep=clients.sleep,
        name="web source",
    )
    web = WebConnector(
        firecrawl=clients.firecrawl,
        chain=ModelFallbackChain(clients.llm, (config.get("llm", {}) or {}).get("models") or ()),
        retry_policy=policy,
        scrape_timeout_ms=scraper_cfg.get("scrape_timeout_ms", DEFAULT_TIMEOUT_MS),
    )
    social = SocialConnector(
        client=clients.x_search,
        bearer_token=(config.get("x", {}) or {}).get("bearer_token") or "",
        lookback_hours=scraper_cfg.get("social_lookback_hours", DEFAULT_LOOKBACK_HOURS),
        max_results=scraper_cfg.get("social_max_results", DEFAULT_MAX_RESULTS),
    )

    def factory(source: "Source") -> BaseConnector:
        if is_social_url(source.url):
            return social
        return web

    return factory
