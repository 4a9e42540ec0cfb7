# backend/vaultflow/services/connectors/tavily.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from .base import BaseSearchConnector, SearchResult
from ..errors import SearchError
from ...core.config import get_settings

logger = logging.getLogger(__name__)

MAX_SNIPPET_CHARS = 500


class TavilyConnector(BaseSearchConnector):
    """
    Tavily /search wrapper.

    Normalises results into SearchResult(url, title, snippet, score). Snippets
    are clipped to MAX_SNIPPET_CHARS. A failed or timed-out request raises
    SearchError; callers treat that as "no results for this query".
    """

    name = "tavily"

    def __init__(self, api_key: str | None = None, *, client: httpx.Client | None = None) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.TAVILY_API_KEY
        self.search_url = f"{settings.TAVILY_BASE_URL.rstrip('/')}/search"
        self.timeout = settings.WEB_SEARCH_TIMEOUT_SECONDS
        self._client = client

    def _payload(
        self, query: str, max_results: int, include_domains: List[str] | None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "query": query,
            "max_results": max_results,
            "search_depth": "basic",
            "include_answer": False,
        }
        if include_domains:
            payload["include_domains"] = include_domains
        return payload

    def search(
        self,
        query: str,
        max_results: int,
        *,
        include_domains: List[str] | None = None,
    ) -> List[SearchResult]:
        if not self.api_key:
            raise SearchError("TAVILY_API_KEY is not configured")

        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = self._payload(query, max_results, include_domains)

        try:
            if self._client is not None:
                resp = self._client.post(self.search_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(self.search_url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Tavily search failed: %s", e, extra={"step": "web_search"})
            raise SearchError(f"Tavily search failed: {e}") from e

        try:
            results = self._normalise(data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Unexpected Tavily response: %s", e, extra={"step": "web_search"})
            raise SearchError(f"Unexpected Tavily response: {e}") from e
        return results[:max_results]

    @staticmethod
    def _normalise(data) -> List[SearchResult]:
        results: List[SearchResult] = []
        for item in data.get("results") or []:
            url = item.get("url")
            if not url:
                continue
            results.append(
                SearchResult(
                    url=url,
                    title=(item.get("title") or url).strip(),
                    snippet=(item.get("content") or "")[:MAX_SNIPPET_CHARS],
                    score=float(item.get("score") or 0.0),
                    published_date=item.get("published_date"),
                )
            )
        return results
