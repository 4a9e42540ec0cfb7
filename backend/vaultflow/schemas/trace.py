# backend/vaultflow/schemas/trace.py
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

StepStatusLiteral = Literal["running", "ok", "error", "skipped"]
StepTypeLiteral = Literal["agent", "tool", "llm", "flow"]


class StepRecord(BaseModel):
    """Canonical step shape accepted by the trace store."""

    step_name: str = Field(min_length=1, max_length=255)
    step_type: StepTypeLiteral | None = None
    tool_name: str | None = None
    status: StepStatusLiteral
    started_at: datetime | None = None
    ended_at: datetime | None = None
    input: Any = None
    output: Any = None
    error: Any = None
    token_estimate: int | None = None
    retry_count: int = 0


class RunStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: UUID
    step_type: str | None = None
    step_name: str
    tool_name: str | None = None
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    input: Any = None
    output: Any = None
    error: Any = None
    token_estimate: int | None = None
    retry_count: int = 0


class RunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")


class RunTrace(BaseModel):
    run: RunOut
    steps: list[RunStepOut]
