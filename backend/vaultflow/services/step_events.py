# backend/vaultflow/services/step_events.py
"""
Step event adapter.

Pipeline code reports progress in whatever shape is natural to it (an agent
node with state, a tool call with args, an LLM call with a model name and
token count, a flow phase). Each producer kind has one explicit mapper that
turns its fields into a canonical StepEvent, and the adapter forwards the
resulting StepRecord to a single injected sink (usually a trace-store writer).

The adapter never raises into pipeline code: a failing sink is logged and
ignored.
"""
from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ..core.db import SessionLocal, utcnow
from ..models.run_step import StepStatus
from ..schemas.trace import StepRecord
from .run_trace import append_step

logger = logging.getLogger(__name__)

StepSink = Callable[[StepRecord], None]


def _coerce_status(status: StepStatus | str) -> StepStatus:
    try:
        return StepStatus(status)
    except ValueError:
        logger.warning("Unknown step status %r, recording as error", status)
        return StepStatus.ERROR


class StepKind(str, enum.Enum):
    AGENT = "agent"
    TOOL = "tool"
    LLM = "llm"
    FLOW = "flow"


@dataclass
class StepEvent:
    kind: StepKind
    name: str
    status: StepStatus = StepStatus.RUNNING
    tool_name: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    input: Any = None
    output: Any = None
    error: Any = None
    token_estimate: int | None = None
    retry_count: int = 0

    def to_record(self) -> StepRecord:
        return StepRecord(
            step_name=self.name,
            step_type=self.kind.value,
            tool_name=self.tool_name,
            status=StepStatus(self.status).value,
            started_at=self.started_at,
            ended_at=self.ended_at,
            input=self.input,
            output=self.output,
            error=self.error,
            token_estimate=self.token_estimate,
            retry_count=self.retry_count,
        )


# ---------------------------------------------------------------------------
# Per-producer mappers
# ---------------------------------------------------------------------------

def _map_agent(fields: Mapping[str, Any]) -> StepEvent:
    # {"agent": "distiller", "node": "extract_concepts", "state": {...}}
    agent = fields.get("agent")
    node = fields["node"]
    return StepEvent(
        kind=StepKind.AGENT,
        name=f"{agent}.{node}" if agent else node,
        input=fields.get("state"),
    )


def _map_tool(fields: Mapping[str, Any]) -> StepEvent:
    # {"tool": "web-search", "step": "search", "args": {...}}
    tool = fields["tool"]
    return StepEvent(
        kind=StepKind.TOOL,
        name=fields.get("step") or tool,
        tool_name=tool,
        input=fields.get("args"),
    )


def _map_llm(fields: Mapping[str, Any]) -> StepEvent:
    # {"purpose": "extract_concepts", "model": "...", "prompt_chars": 1234}
    prompt_chars = fields.get("prompt_chars")
    return StepEvent(
        kind=StepKind.LLM,
        name=fields.get("purpose") or "llm_call",
        tool_name=fields.get("model"),
        input={"prompt_chars": prompt_chars, **(fields.get("input") or {})},
        # ~4 chars per token
        token_estimate=prompt_chars // 4 if isinstance(prompt_chars, int) else None,
    )


def _map_flow(fields: Mapping[str, Any]) -> StepEvent:
    # {"flow": "distill", "input": {...}}
    return StepEvent(
        kind=StepKind.FLOW,
        name=fields["flow"],
        input=fields.get("input"),
    )


MAPPERS: dict[StepKind, Callable[[Mapping[str, Any]], StepEvent]] = {
    StepKind.AGENT: _map_agent,
    StepKind.TOOL: _map_tool,
    StepKind.LLM: _map_llm,
    StepKind.FLOW: _map_flow,
}


def to_step_event(kind: StepKind | str, fields: Mapping[str, Any]) -> StepEvent:
    return MAPPERS[StepKind(kind)](fields)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

@dataclass
class StepHandle:
    """Mutable handle yielded by StepEventAdapter.step(); set output/status before exit."""

    output: Any = None
    status: StepStatus = StepStatus.OK
    token_estimate: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class StepEventAdapter:
    def __init__(self, on_step: StepSink | None = None, *, run_id: UUID | None = None) -> None:
        self._on_step = on_step
        self._run_id = run_id
        self._in_flight: dict[str, tuple[StepEvent, datetime]] = {}

    def emit(self, event: StepEvent) -> None:
        """Forward one event to the sink. Never raises."""
        if self._on_step is None:
            return
        try:
            self._on_step(event.to_record())
        except Exception:
            logger.exception(
                "Failed to emit run step",
                extra={
                    "run_id": str(self._run_id) if self._run_id else None,
                    "step": event.name,
                },
            )

    def on_step_start(
        self,
        correlation_id: str,
        kind: StepKind | str,
        fields: Mapping[str, Any],
    ) -> None:
        try:
            event = to_step_event(kind, fields)
        except Exception:
            logger.exception("Unmappable step start event", extra={"step": correlation_id})
            return

        started = utcnow()
        event.status = StepStatus.RUNNING
        event.started_at = started
        self._in_flight[correlation_id] = (event, started)
        self.emit(event)

    def on_step_end(
        self,
        correlation_id: str,
        *,
        output: Any = None,
        error: Any = None,
        status: StepStatus | str | None = None,
        token_estimate: int | None = None,
    ) -> None:
        ended = utcnow()
        pending = self._in_flight.pop(correlation_id, None)
        if pending is None:
            logger.warning(
                "Step end without matching start",
                extra={"step": correlation_id},
            )
            event = StepEvent(kind=StepKind.AGENT, name=correlation_id, started_at=ended)
        else:
            source, started = pending
            event = StepEvent(
                kind=source.kind,
                name=source.name,
                tool_name=source.tool_name,
                started_at=started,
                token_estimate=source.token_estimate,
                retry_count=source.retry_count,
            )

        if status is None:
            status = StepStatus.ERROR if error is not None else StepStatus.OK
        event.status = _coerce_status(status)
        event.ended_at = ended
        event.output = output
        event.error = error
        if token_estimate is not None:
            event.token_estimate = token_estimate
        self.emit(event)

    def record(
        self,
        kind: StepKind | str,
        fields: Mapping[str, Any],
        *,
        status: StepStatus | str = StepStatus.OK,
        output: Any = None,
        error: Any = None,
    ) -> None:
        """Emit a single already-finished step (no start/end pairing)."""
        try:
            event = to_step_event(kind, fields)
        except Exception:
            logger.exception("Unmappable step event")
            return
        now = utcnow()
        event.status = _coerce_status(status)
        event.started_at = now
        event.ended_at = now
        event.output = output
        event.error = error
        self.emit(event)

    @contextmanager
    def step(
        self,
        correlation_id: str,
        kind: StepKind | str,
        fields: Mapping[str, Any],
    ) -> Iterator[StepHandle]:
        """
        Pair start/end around a block. Exceptions from the block are recorded
        as an error step and re-raised; the caller decides whether they are fatal.
        """
        handle = StepHandle()
        self.on_step_start(correlation_id, kind, fields)
        try:
            yield handle
        except Exception as exc:
            self.on_step_end(correlation_id, error=exc, status=StepStatus.ERROR)
            raise
        self.on_step_end(
            correlation_id,
            output=handle.output,
            status=handle.status,
            token_estimate=handle.token_estimate,
        )


def make_step_writer(
    run_id: UUID,
    session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
) -> StepSink:
    """
    Sink that appends each step in its own short-lived session, so trace
    writes never share a transaction with the pipeline's primary work.
    """

    def _write(step: StepRecord) -> None:
        db = session_factory()
        try:
            append_step(db, run_id, step)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return _write
