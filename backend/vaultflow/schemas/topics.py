# backend/vaultflow/schemas/topics.py
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SavedTopicCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    goal: str = Field(min_length=1, max_length=2000)
    focus_tags: list[str] = Field(default_factory=list)
    max_docs_per_run: int = 5
    min_quality_results: int = 3
    min_relevance_score: float = 0.8
    max_iterations: int = 5
    max_queries: int = 10
    is_active: bool = True

    @field_validator("focus_tags")
    @classmethod
    def _normalise_tags(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in v:
            tag = tag.strip().lower()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @model_validator(mode="after")
    def _clamp(self):
        self.name = self.name.strip()
        self.max_docs_per_run = max(1, min(self.max_docs_per_run, 20))
        self.min_quality_results = max(1, min(self.min_quality_results, 20))
        self.min_relevance_score = max(0.0, min(self.min_relevance_score, 1.0))
        self.max_iterations = max(1, min(self.max_iterations, 20))
        self.max_queries = max(1, min(self.max_queries, 50))
        return self


class SavedTopicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    goal: str
    focus_tags: list[str]
    max_docs_per_run: int
    min_quality_results: int
    min_relevance_score: float
    max_iterations: int
    max_queries: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
