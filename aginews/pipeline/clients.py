"""Explicitly constructed external clients, injected into pipeline components."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from aginews.config import ConfigError
from aginews.connectors.firecrawl import DEFAULT_BASE_URL as FIRECRAWL_CLOUD_URL, FirecrawlClient
from aginews.connectors.social import XSearchClient
from aginews.delivery.transport import EmailTransport, build_transport
from aginews.llm import LLMClient

logger = logging.getLogger(__name__)


@dataclass
class ClientBundle:
    llm: LLMClient
    firecrawl: FirecrawlClient
    x_search: XSearchClient
    transport: Optional[EmailTransport] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


def build_clients(config: Dict[str, Any], require_transport: bool = True) -> ClientBundle:
    """Build every client from config. Missing required credentials raise ConfigError."""
    llm = LLMClient(config)
    if llm.provider != "mock" and not llm.api_key and not llm.base_url:
        raise ConfigError("llm.api_key is required (or llm.base_url for a local endpoint)")

    firecrawl = FirecrawlClient(config)
    if not firecrawl.api_key and firecrawl.base_url == FIRECRAWL_CLOUD_URL:
        raise ConfigError(
            "firecrawl.api_key is required (or firecrawl.base_url for a self-hosted instance)"
        )

    transport = build_transport(config) if require_transport else None
    return ClientBundle(
        llm=llm,
        firecrawl=firecrawl,
        x_search=XSearchClient(),
        transport=transport,
    )
