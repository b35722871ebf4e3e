"""Source connectors for AGI News.

Two kinds: X/Twitter profiles (search API) and generic web pages
(Firecrawl markdown filtered by an LLM).
"""

from aginews.connectors.base import BaseConnector, SourceError
from aginews.connectors.factory import build_connector_factory
from aginews.connectors.firecrawl import FirecrawlClient, ScrapeResult
from aginews.connectors.social import SocialConnector, XSearchClient
from aginews.connectors.web import WebConnector

__all__ = [
    "BaseConnector",
    "SourceError",
    "build_connector_factory",
    "FirecrawlClient",
    "ScrapeResult",
    "SocialConnector",
    "XSearchClient",
    "WebConnector",
]
