from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SearchResult:
    url: str
    title: str
    snippet: str
    score: float = 0.0
    published_date: str | None = None


class BaseSearchConnector(ABC):
    name: str

    @abstractmethod
    def search(
        self,
        query: str,
        max_results: int,
        *,
        include_domains: list[str] | None = None,
    ) -> list[SearchResult]:
        """Run one query. Raises SearchError on provider failure; never retries."""
