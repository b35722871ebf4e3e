"""Generic web source: Firecrawl markdown + LLM relevance/structuring filter."""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import ValidationError

from aginews.connectors.base import BaseConnector, SourceError
from aginews.connectors.firecrawl import DEFAULT_TIMEOUT_MS, FirecrawlClient
from aginews.connectors.schemas import ExtractedStory, StoryExtraction
from aginews.llm import ModelFallbackChain
from aginews.retry import RetryPolicy

if TYPE_CHECKING:
    from aginews.storage.models import Source

logger = logging.getLogger(__name__)

FILTER_PROMPT = """Today is {today}. From the scraped page content below, return the headlines, links and short summaries of stories or posts related to AI or LLMs. They can be from today or yesterday.

The format must be {{"stories": [{{"title": "headline", "url": "link", "content": "what the story says", "summary": "one or two sentences"}}]}}.
If there are no stories or posts related to AI or LLMs, return {{"stories": []}}.

The source link is {source_url}. If a story or post link is not absolute, make it absolute using the source link.

RETURN ONLY JSON IN THE SPECIFIED FORMAT. Do not include markdown, code fences or any other text.

Scraped Content:


{markdown}

JSON:"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ScrapeError(SourceError):
    """The scrape service did not return a usable document."""


class ExtractionError(SourceError):
    """LLM output was not valid JSON of the expected shape."""


def build_filter_prompt(source_url: str, markdown: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return FILTER_PROMPT.format(
        today=today.strftime("%B %d, %Y"),
        source_url=source_url,
        markdown=markdown,
    )


def parse_story_extraction(text: str) -> List[ExtractedStory]:
    """Parse the LLM filter response into stories, or raise ExtractionError."""
    cleaned = _FENCE_RE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"LLM response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError("LLM response is not a JSON object")
    try:
        return StoryExtraction.model_validate(data).stories
    except ValidationError as e:
        raise ExtractionError(f"LLM response has the wrong shape: {e.error_count()} error(s)") from e


class WebConnector(BaseConnector):
    """Scrape a page to markdown and let the LLM pick out AI stories."""

    def __init__(
        self,
        firecrawl: FirecrawlClient,
        chain: ModelFallbackChain,
        retry_policy: Optional[RetryPolicy] = None,
        scrape_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.firecrawl = firecrawl
        self.chain = chain
        self.retry_policy = retry_policy or RetryPolicy.fixed(name="web scrape")
        self.scrape_timeout_ms = scrape_timeout_ms
        self.today = today

    async def fetch(self, source: "Source") -> List[ExtractedStory]:
        result = await self.firecrawl.scrape_to_markdown(source.url, self.scrape_timeout_ms)
        if not result.success:
            raise ScrapeError(f"Failed to scrape {source.url}: {result.error}")

        prompt = build_filter_prompt(source.url, result.markdown, self.today())
        text, model = await self.chain.complete(prompt)

        stories = parse_story_extraction(text)
        logger.info("Found %d stories from %s (model %s)", len(stories), source.url, model)
        return stories
