"""Social profile source: recent posts from an X (Twitter) account."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from aginews.config import ConfigError
from aginews.connectors.base import BaseConnector, SourceError
from aginews.connectors.schemas import ExtractedStory, Tweet, TweetSearchResponse

if TYPE_CHECKING:
    from aginews.storage.models import Source

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.x.com/2/tweets/search/recent"
POST_URL_TEMPLATE = "https://x.com/i/status/{id}"

DEFAULT_LOOKBACK_HOURS = 48
DEFAULT_MAX_RESULTS = 20
TITLE_MAX_LEN = 200
SUMMARY_MAX_LEN = 500

_HANDLE_RE = re.compile(r"(?:^|[/.])(?:x|twitter)\.com/([A-Za-z0-9_]+)", re.IGNORECASE)
_RESERVED_PATHS = {"i", "home", "search", "explore", "hashtag", "intent", "share"}


class SocialSearchError(SourceError):
    """The X search API rejected or failed the request."""


def extract_handle(url: str) -> Optional[str]:
    """Return the profile handle in an x.com / twitter.com URL, if any."""
    m = _HANDLE_RE.search(url or "")
    if not m:
        return None
    handle = m.group(1)
    if handle.lower() in _RESERVED_PATHS:
        return None
    return handle


def is_social_url(url: str) -> bool:
    return extract_handle(url) is not None


def build_query(handle: str) -> str:
    return f"from:{handle} has:media -is:retweet -is:reply"


def tweet_to_story(tweet: Tweet) -> ExtractedStory:
    return ExtractedStory(
        title=tweet.text[:TITLE_MAX_LEN],
        url=POST_URL_TEMPLATE.format(id=tweet.id),
        summary=tweet.text[:SUMMARY_MAX_LEN],
        content=tweet.text,
    )


class XSearchClient:
    """Recent-search endpoint of the X API v2."""

    def __init__(self, search_url: str = SEARCH_URL, timeout: float = 30.0) -> None:
        self.search_url = search_url
        self.timeout = timeout

    async def search(
        self,
        query: str,
        max_results: int,
        since: datetime,
        bearer_token: str,
    ) -> List[Tweet]:
        params = {
            "query": query,
            "max_results": str(max_results),
            "start_time": since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        headers = {"Authorization": f"Bearer {bearer_token}"}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(self.search_url, params=params, headers=headers) as resp:
                    if resp.status >= 400:
                        raise SocialSearchError(
                            f"X search returned {resp.status} {resp.reason} for {query!r}"
                        )
                    data: Dict[str, Any] = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SocialSearchError(f"X search request failed: {e}") from e

        try:
            parsed = TweetSearchResponse.model_validate(data or {})
        except ValidationError as e:
            raise SocialSearchError(f"Unexpected X search response: {e.error_count()} error(s)") from e

        if parsed.result_count == 0 or not parsed.data:
            return []
        return parsed.data


class SocialConnector(BaseConnector):
    """Recent media posts from a profile, excluding retweets and replies."""

    def __init__(
        self,
        client: XSearchClient,
        bearer_token: str,
        lookback_hours: int = DEFAULT_LOOKBACK_HOURS,
        max_results: int = DEFAULT_MAX_RESULTS,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self.bearer_token = bearer_token
        self.lookback_hours = lookback_hours
        self.max_results = max_results
        self.now = now

    def check_ready(self) -> None:
        if not self.bearer_token:
            raise ConfigError("x.bearer_token is required for social sources")

    async def fetch(self, source: "Source") -> List[ExtractedStory]:
        handle = extract_handle(source.url)
        if not handle:
            logger.warning("Source %s has no profile handle in %s", source.id, source.url)
            return []
        self.check_ready()

        since = self.now() - timedelta(hours=self.lookback_hours)
        tweets = await self.client.search(
            build_query(handle), self.max_results, since, self.bearer_token
        )
        if tweets:
            logger.info("Found %d posts from %s", len(tweets), handle)
        else:
            logger.info("No recent posts from %s", handle)
        return [tweet_to_story(t) for t in tweets]
