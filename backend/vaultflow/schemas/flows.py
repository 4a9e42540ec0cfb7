# backend/vaultflow/schemas/flows.py
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .artifacts import ContentTypeLiteral

TerminationReason = Literal[
    "quality-met",
    "iteration-budget-exhausted",
    "query-budget-exhausted",
    "no-queries-available",
]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Distillation
# ---------------------------------------------------------------------------

class DistillRequest(BaseModel):
    # Mutually exclusive selectors, applied in priority order: ids > tag > recent
    document_ids: list[UUID] | None = None
    tag: str | None = None
    limit: int | None = None
    day: str | None = None

    @field_validator("tag", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v


class DistillResult(BaseModel):
    run_id: UUID | None = None
    docs_processed: int = 0
    concepts_proposed: int = 0
    flashcards_proposed: int = 0
    artifact_ids: list[UUID] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Web scout
# ---------------------------------------------------------------------------

class WebScoutRequest(BaseModel):
    goal: str = Field(min_length=1, max_length=2000)
    mode: Literal["explicit-query", "derive-from-vault"] = "explicit-query"
    query: str | None = None
    focus_tags: list[str] | None = None
    derive_limit: int = 5
    max_iterations: int = 5
    max_queries: int = 10
    min_quality_results: int = 3
    min_relevance: float = 0.6
    results_per_query: int = 8
    allowed_domains: list[str] | None = None
    import_to_library: bool = False
    day: str | None = None

    @model_validator(mode="after")
    def _clamp_budgets(self):
        self.max_iterations = int(_clamp(self.max_iterations, 1, 20))
        self.max_queries = int(_clamp(self.max_queries, 1, 50))
        self.min_quality_results = int(_clamp(self.min_quality_results, 1, 20))
        self.min_relevance = _clamp(self.min_relevance, 0.0, 1.0)
        self.results_per_query = int(_clamp(self.results_per_query, 1, 20))
        self.derive_limit = int(_clamp(self.derive_limit, 1, 20))
        if self.query is not None:
            self.query = self.query.strip() or None
        if self.allowed_domains is not None:
            self.allowed_domains = [d.strip().lower() for d in self.allowed_domains if d.strip()]
        return self


class WebProposal(BaseModel):
    url: str
    title: str
    summary: str
    relevance_reason: str
    relevance_score: float
    content_type: ContentTypeLiteral
    topics: list[str] = Field(default_factory=list)
    source_query: str
    excerpt: str | None = None
    reasoning: list[str] = Field(default_factory=list)


class WebScoutCounts(BaseModel):
    iterations: int = 0
    queries_executed: int = 0
    results_fetched: int = 0
    results_evaluated: int = 0
    llm_evaluations: int = 0
    duplicates_filtered: int = 0
    domain_filtered: int = 0
    proposals_created: int = 0
    documents_imported: int = 0
    documents_skipped: int = 0


class WebScoutResult(BaseModel):
    run_id: UUID | None = None
    proposals: list[WebProposal] = Field(default_factory=list)
    artifact_ids: list[UUID] = Field(default_factory=list)
    imported_document_ids: list[UUID] = Field(default_factory=list)
    termination_reason: TerminationReason
    counts: WebScoutCounts = Field(default_factory=WebScoutCounts)
    queries_used: list[str] = Field(default_factory=list)
    reasoning: list[str] = Field(default_factory=list)


class RunStarted(BaseModel):
    run_id: UUID
    status: str = "running"


# ---------------------------------------------------------------------------
# Curate / research
# ---------------------------------------------------------------------------

class CurateRequest(BaseModel):
    document_id: UUID
    enable_categorization: bool = True


class CurateResult(BaseModel):
    run_id: UUID | None = None
    document_id: UUID
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    related_document_ids: list[UUID] = Field(default_factory=list)


class ResearchRequest(BaseModel):
    goal: str | None = None
    day: str | None = None


class ResearchResult(BaseModel):
    run_id: UUID | None = None
    goal: str
    report_id: UUID | None = None
    proposals_found: int = 0
    termination_reason: TerminationReason | None = None


# ---------------------------------------------------------------------------
# Composite flows
# ---------------------------------------------------------------------------

class DistillCurateRequest(BaseModel):
    # Same selector order as DistillRequest: ids > tag > recent
    document_ids: list[UUID] | None = None
    tag: str | None = None
    limit: int | None = None
    day: str | None = None
    enable_categorization: bool = False

    @field_validator("tag", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v


class DocumentFailure(BaseModel):
    document_id: UUID
    message: str


class DistillCurateCounts(BaseModel):
    docs_targeted: int = 0
    docs_curated: int = 0
    docs_curate_failed: int = 0
    docs_processed: int = 0
    concepts_proposed: int = 0
    flashcards_proposed: int = 0


class DistillCurateResult(BaseModel):
    distill_run_id: UUID | None = None
    curate_run_ids: list[UUID] = Field(default_factory=list)
    curated_document_ids: list[UUID] = Field(default_factory=list)
    counts: DistillCurateCounts = Field(default_factory=DistillCurateCounts)
    errors: list[DocumentFailure] = Field(default_factory=list)


TopicStage = Literal["topic-setup", "curate", "web-scout", "distill"]


class TopicReportRequest(BaseModel):
    day: str | None = None
    topic_ids: list[UUID] | None = None
    include_inactive: bool = False
    # Overrides for every selected topic; unset means the topic's own value
    max_docs_per_topic: int | None = None
    min_quality_results: int | None = None
    min_relevance: float | None = None
    max_iterations: int | None = None
    max_queries: int | None = None
    enable_categorization: bool = False
    save_report: bool = True


class TopicStageError(BaseModel):
    stage: TopicStage
    message: str
    document_id: UUID | None = None


class TopicRunIds(BaseModel):
    curate: list[UUID] = Field(default_factory=list)
    web_scout: UUID | None = None
    distill: UUID | None = None


class TopicCounts(BaseModel):
    docs_matched: int = 0
    docs_curated: int = 0
    docs_curate_failed: int = 0
    web_proposals: int = 0
    docs_processed: int = 0
    concepts_proposed: int = 0
    flashcards_proposed: int = 0


class TopicReportCounts(TopicCounts):
    topics_targeted: int = 0


class TopicResult(BaseModel):
    topic_id: UUID
    topic_name: str
    goal: str
    focus_tags: list[str] = Field(default_factory=list)
    document_ids: list[UUID] = Field(default_factory=list)
    run_ids: TopicRunIds = Field(default_factory=TopicRunIds)
    counts: TopicCounts = Field(default_factory=TopicCounts)
    proposals: list[WebProposal] = Field(default_factory=list)
    errors: list[TopicStageError] = Field(default_factory=list)


class TopicReportResult(BaseModel):
    run_id: UUID | None = None
    day: str
    report_id: UUID | None = None
    topics_processed: int = 0
    topics: list[TopicResult] = Field(default_factory=list)
    counts: TopicReportCounts = Field(default_factory=TopicReportCounts)
