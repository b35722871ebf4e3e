"""Firecrawl client: render a URL to a markdown document."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.firecrawl.dev"
DEFAULT_TIMEOUT_MS = 60_000


@dataclass
class ScrapeResult:
    success: bool
    markdown: str = ""
    error: Optional[str] = None


class FirecrawlClient:
    """Thin async wrapper over Firecrawl's ``/v1/scrape`` endpoint."""

    def __init__(self, config: Dict[str, Any]) -> None:
        fc = config.get("firecrawl", {}) or {}
        self.api_key: str = fc.get("api_key") or ""
        self.base_url: str = (fc.get("base_url") or DEFAULT_BASE_URL).rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def scrape_to_markdown(self, url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> ScrapeResult:
        """Scrape ``url``. Network and API failures come back as ``success=False``."""
        payload = {"url": url, "formats": ["markdown"], "timeout": timeout_ms}
        # leave the service its own timeout before cutting the connection
        client_timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000 + 5)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(
                    f"{self.base_url}/v1/scrape", json=payload, headers=self._headers()
                ) as resp:
                    try:
                        body = await resp.json(content_type=None)
                    except ValueError:
                        body = {}
                    if resp.status >= 400:
                        error = (body or {}).get("error") or resp.reason
                        return ScrapeResult(success=False, error=f"HTTP {resp.status}: {error}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Firecrawl request for %s failed: %s", url, e)
            return ScrapeResult(success=False, error=str(e) or type(e).__name__)

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            return ScrapeResult(success=False, error=error or "scrape unsuccessful")

        markdown = (body.get("data") or {}).get("markdown") or ""
        if not markdown.strip():
            return ScrapeResult(success=False, error="empty markdown")
        return ScrapeResult(success=True, markdown=markdown)
