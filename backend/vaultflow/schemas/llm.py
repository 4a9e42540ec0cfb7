# backend/vaultflow/schemas/llm.py
"""
Output schemas for structured language-model calls.

Length limits are applied by the callers (truncation), not here, so an
over-long answer is clipped instead of discarded.
"""
from typing import Literal

from pydantic import BaseModel, Field

from .artifacts import ContentTypeLiteral

ConceptTypeLiteral = Literal["definition", "principle", "framework", "procedure", "fact"]


class ExtractedConcept(BaseModel):
    label: str = Field(min_length=1)
    type: ConceptTypeLiteral
    summary: str = Field(min_length=1)
    evidence: list[str] = Field(default_factory=list)


class ConceptExtraction(BaseModel):
    concepts: list[ExtractedConcept] = Field(default_factory=list)


class GeneratedFlashcard(BaseModel):
    format: Literal["qa", "cloze"]
    front: str = Field(min_length=1)
    back: str = Field(min_length=1)
    concept_label: str | None = None


class FlashcardGeneration(BaseModel):
    flashcards: list[GeneratedFlashcard] = Field(default_factory=list)


class DerivedQuery(BaseModel):
    query: str = Field(min_length=1)
    priority: int = 3
    rationale: str | None = None


class DerivedQueries(BaseModel):
    queries: list[DerivedQuery] = Field(default_factory=list)


class EvaluationResult(BaseModel):
    relevance_score: float = Field(ge=0.0, le=1.0)
    content_type: ContentTypeLiteral = "other"
    topics: list[str] = Field(default_factory=list)
    reasoning: str = ""


class TagExtraction(BaseModel):
    tags: list[str] = Field(default_factory=list)


class Categorization(BaseModel):
    category: Literal[
        "learning",
        "software engineering",
        "ai systems",
        "finance",
        "productivity",
        "other",
    ]
    confidence: float | None = None


class ReportSynthesis(BaseModel):
    title: str = Field(min_length=1)
    executive_summary: str = ""
    markdown: str = Field(min_length=1)
    topics_covered: list[str] = Field(default_factory=list)
