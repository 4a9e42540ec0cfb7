# backend/vaultflow/schemas/artifacts.py
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ArtifactStatusLiteral = Literal["proposed", "approved", "rejected", "superseded"]
ContentTypeLiteral = Literal["article", "documentation", "paper", "tutorial", "video", "other"]

DAY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class ArtifactInput(BaseModel):
    run_id: UUID | None = None
    agent: str = Field(min_length=1, max_length=64)
    kind: str = Field(min_length=1, max_length=64)
    day: str = Field(pattern=DAY_PATTERN)
    title: str
    content: dict[str, Any] = Field(default_factory=dict)
    source_refs: dict[str, Any] | None = None


class ArtifactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    run_id: UUID | None = None
    agent: str
    kind: str
    day: str
    title: str
    content: dict[str, Any]
    source_refs: dict[str, Any] | None = None
    status: ArtifactStatusLiteral
    created_at: datetime
    reviewed_at: datetime | None = None
    read_at: datetime | None = None


class ArtifactCounts(BaseModel):
    proposed: int = 0
    approved: int = 0
    rejected: int = 0
    superseded: int = 0


# ---------------------------------------------------------------------------
# Per-kind content shapes
# ---------------------------------------------------------------------------

class ConceptContent(BaseModel):
    type: str
    summary: str
    evidence: list[str] = Field(default_factory=list)
    document_title: str


class FlashcardContent(BaseModel):
    format: Literal["qa", "cloze"]
    front: str
    back: str
    document_title: str


class WebProposalContent(BaseModel):
    url: str
    summary: str
    relevance_reason: str
    relevance_score: float
    content_type: ContentTypeLiteral
    topics: list[str] = Field(default_factory=list)
    source_query: str
    excerpt: str | None = None


class ReportContent(BaseModel):
    title: str
    markdown: str
    executive_summary: str = ""
    sources_count: int = 0
    topics_covered: list[str] = Field(default_factory=list)
    goal: str | None = None
