# backend/vaultflow/services/web_scoring.py
"""
Relevance scoring for web search results.

A deterministic heuristic (domain reputation + goal keyword overlap) runs
first. Clearly good or clearly bad results are decided by the heuristic
alone; only the borderline band goes to the LLM evaluator, and an evaluator
failure falls back to the heuristic score.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

from ..schemas.llm import EvaluationResult
from .connectors.base import SearchResult
from .llm import StructuredLLM

logger = logging.getLogger(__name__)

HIGH_QUALITY_DOMAINS = frozenset(
    {
        "arxiv.org",
        "github.com",
        "stackoverflow.com",
        "wikipedia.org",
        "nature.com",
        "sciencedirect.com",
        "acm.org",
        "ieee.org",
        "mit.edu",
        "stanford.edu",
        "harvard.edu",
        "berkeley.edu",
        "medium.com",
        "dev.to",
        "towardsdatascience.com",
    }
)

LOW_QUALITY_DOMAINS = frozenset(
    {
        "pinterest.com",
        "facebook.com",
        "twitter.com",
        "x.com",
        "tiktok.com",
        "instagram.com",
        "reddit.com",
    }
)

BASE_SCORE = 0.5
HIGH_QUALITY_BONUS = 0.2
LOW_QUALITY_PENALTY = 0.3
KEYWORD_WEIGHT = 0.3

# Heuristic scores outside (LOW, HIGH) skip the LLM call
CONFIDENT_HIGH = 0.7
CONFIDENT_LOW = 0.4

EVALUATE_SYSTEM_PROMPT = """Evaluate this web resource for relevance to the user's learning goal.
Score relevance_score from 0.0 (irrelevant) to 1.0 (highly relevant).
Classify content_type: article, documentation, paper, tutorial, video, or other.
Extract up to 5 topic tags. Give a one-sentence reasoning."""


def extract_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def domain_in(domain: str, domains) -> bool:
    """Exact match or subdomain of any entry (en.wikipedia.org matches wikipedia.org)."""
    if not domain:
        return False
    return any(domain == d or domain.endswith("." + d) for d in domains)


def heuristic_score(result: SearchResult, goal: str) -> float:
    score = BASE_SCORE

    domain = extract_domain(result.url)
    if domain_in(domain, HIGH_QUALITY_DOMAINS) or domain.endswith(".edu") or domain.endswith(".gov"):
        score += HIGH_QUALITY_BONUS
    if domain_in(domain, LOW_QUALITY_DOMAINS):
        score -= LOW_QUALITY_PENALTY

    goal_words = goal.lower().split()
    if goal_words:
        title = result.title.lower()
        snippet = result.snippet.lower()
        matched = sum(1 for w in goal_words if w in title or w in snippet)
        score += (matched / len(goal_words)) * KEYWORD_WEIGHT

    return max(0.0, min(1.0, score))


@dataclass
class ScoredResult:
    result: SearchResult
    relevance_score: float
    content_type: str
    topics: list[str] = field(default_factory=list)
    reasoning: str = ""
    evaluated_by: str = "heuristic"  # heuristic | llm | heuristic-fallback
    source_query: str = ""


class ResultEvaluator:
    def __init__(self, llm: StructuredLLM | None = None) -> None:
        self.llm = llm

    def evaluate(self, result: SearchResult, goal: str, *, source_query: str = "") -> ScoredResult:
        heuristic = heuristic_score(result, goal)

        if heuristic > CONFIDENT_HIGH:
            return ScoredResult(
                result=result,
                relevance_score=heuristic,
                content_type="article",
                reasoning=f"High-quality domain and strong keyword match (heuristic: {heuristic:.2f})",
                source_query=source_query,
            )
        if heuristic < CONFIDENT_LOW or self.llm is None:
            return ScoredResult(
                result=result,
                relevance_score=heuristic,
                content_type="other",
                reasoning=f"Low-quality domain or weak keyword match (heuristic: {heuristic:.2f})",
                source_query=source_query,
            )

        try:
            evaluation = self.llm.invoke(
                EVALUATE_SYSTEM_PROMPT,
                f"GOAL: {goal}\n\nURL: {result.url}\nTITLE: {result.title}\nSNIPPET: {result.snippet}",
                EvaluationResult,
            )
        except Exception as e:
            logger.warning("LLM evaluation failed for %s: %s", result.url, e, extra={"step": "evaluate_result"})
            return ScoredResult(
                result=result,
                relevance_score=heuristic,
                content_type="other",
                reasoning=f"LLM evaluation failed, using heuristic ({heuristic:.2f})",
                evaluated_by="heuristic-fallback",
                source_query=source_query,
            )

        return ScoredResult(
            result=result,
            relevance_score=max(0.0, min(1.0, evaluation.relevance_score)),
            content_type=evaluation.content_type,
            topics=evaluation.topics[:5],
            reasoning=evaluation.reasoning[:300],
            evaluated_by="llm",
            source_query=source_query,
        )
