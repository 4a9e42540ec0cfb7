from __future__ import annotations

from .base import BaseSearchConnector, SearchResult
from .tavily import TavilyConnector


def get_search_connector() -> BaseSearchConnector:
    """Default web search provider for flows started from the API or the scheduler."""
    return TavilyConnector()


__all__ = ["BaseSearchConnector", "SearchResult", "TavilyConnector", "get_search_connector"]
