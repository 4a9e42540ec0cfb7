# backend/vaultflow/services/flows.py
"""
Flow runners: one traced run per pipeline invocation.

Every runner creates (or adopts) a run, wraps the pipeline in a flow step,
and finishes the run exactly once: "ok" or "partial" on success, "error"
when the pipeline raised. Pipeline exceptions are re-raised after the run
has been closed.

Composite flows (distill-curate, topic report) chain these runners, so each
stage keeps a run of its own and a failing stage does not stop the next.

Steps are written through make_step_writer, i.e. in their own sessions,
so a failing trace write never rolls back pipeline work.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar, Union
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.run import RunKind, RunStatus
from ..models.run_step import StepStatus
from ..schemas.flows import (
    CurateRequest,
    CurateResult,
    DistillCurateCounts,
    DistillCurateRequest,
    DistillCurateResult,
    DistillRequest,
    DistillResult,
    DocumentFailure,
    ResearchRequest,
    ResearchResult,
    RunStarted,
    TopicReportRequest,
    TopicReportResult,
    TopicResult,
    TopicStageError,
    WebScoutRequest,
    WebScoutResult,
)
from ..schemas.topics import SavedTopicOut
from .artifacts import today_key
from .connectors import get_search_connector
from .connectors.base import BaseSearchConnector
from .curator import Curator
from .distiller import Distiller
from .documents import DocumentStore
from .errors import VaultflowError
from .llm import OpenAIStructuredLLM, StructuredLLM
from .reports import insert_report
from .research import Researcher
from .run_trace import create_run, finish_run, sweep_stale_runs
from .saved_topics import select_topics
from .step_events import StepEventAdapter, StepKind, StepSink, make_step_writer
from .topic_reports import aggregate_counts, build_report_content, proposal_urls, topic_slug
from .web_scout import WebScout

logger = logging.getLogger(__name__)

R = TypeVar("R")
SessionFactory = Union[sessionmaker, Callable[[], Session]]


def _execute(
    kind: RunKind,
    body: Callable[[Session, StepSink, UUID], tuple[R, RunStatus]],
    *,
    session_factory: SessionFactory,
    flow_input: Any = None,
    run_id: UUID | None = None,
) -> R:
    db = session_factory()
    try:
        if run_id is None:
            run_id = create_run(db, kind.value, {"input": flow_input})
        on_step = make_step_writer(run_id, session_factory)
        steps = StepEventAdapter(on_step, run_id=run_id)
        log_extra = {"run_id": str(run_id), "flow": kind.value}

        steps.on_step_start("flow", StepKind.FLOW, {"flow": kind.value, "input": flow_input})
        try:
            result, status = body(db, on_step, run_id)
        except Exception as e:
            db.rollback()
            steps.on_step_end("flow", error=e)
            _close_run(session_factory, run_id, RunStatus.ERROR)
            logger.exception("Flow failed", extra=log_extra)
            raise

        steps.on_step_end("flow", output=result.model_dump(mode="json"), status="ok")
        _close_run(session_factory, run_id, status)
        logger.info("Flow finished with status %s", status.value, extra=log_extra)
        return result
    finally:
        db.close()


def _close_run(session_factory: SessionFactory, run_id: UUID, status: RunStatus) -> None:
    db = session_factory()
    try:
        finish_run(db, run_id, status)
    except Exception:
        db.rollback()
        logger.exception("Failed to finish run", extra={"run_id": str(run_id), "step": "finish_run"})
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Synchronous flows
# ---------------------------------------------------------------------------

def run_distill_flow(
    request: DistillRequest,
    *,
    llm: StructuredLLM | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> DistillResult:
    llm = llm or OpenAIStructuredLLM()

    def body(db: Session, on_step: StepSink, run_id: UUID):
        result = Distiller(db, llm, on_step=on_step, run_id=run_id).run(request)
        result.run_id = run_id
        return result, RunStatus.OK

    return _execute(
        RunKind.DISTILL,
        body,
        session_factory=session_factory,
        flow_input=request.model_dump(mode="json"),
    )


def run_curate_flow(
    request: CurateRequest,
    *,
    llm: StructuredLLM | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> CurateResult:
    llm = llm or OpenAIStructuredLLM()

    def body(db: Session, on_step: StepSink, run_id: UUID):
        result = Curator(db, llm, on_step=on_step, run_id=run_id).run(request)
        return result, RunStatus.OK

    return _execute(
        RunKind.CURATE,
        body,
        session_factory=session_factory,
        flow_input=request.model_dump(mode="json"),
    )


def run_web_scout_flow(
    request: WebScoutRequest,
    *,
    llm: StructuredLLM | None = None,
    search: BaseSearchConnector | None = None,
    session_factory: SessionFactory = SessionLocal,
    run_id: UUID | None = None,
) -> WebScoutResult:
    """
    Run the web scout to completion. Pass run_id to adopt a run created
    earlier by start_web_scout_flow.
    """
    llm = llm or OpenAIStructuredLLM()
    search = search or get_search_connector()

    def body(db: Session, on_step: StepSink, rid: UUID):
        result = WebScout(db, llm, search, on_step=on_step, run_id=rid).run(request)
        return result, RunStatus.OK

    return _execute(
        RunKind.WEB_SCOUT,
        body,
        session_factory=session_factory,
        flow_input=request.model_dump(mode="json"),
        run_id=run_id,
    )


def run_research_flow(
    request: ResearchRequest | None = None,
    *,
    llm: StructuredLLM | None = None,
    search: BaseSearchConnector | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> ResearchResult:
    request = request or ResearchRequest()
    llm = llm or OpenAIStructuredLLM()
    search = search or get_search_connector()

    def body(db: Session, on_step: StepSink, run_id: UUID):
        result = Researcher(db, llm, search, on_step=on_step, run_id=run_id).run(request)
        # Nothing found means nothing to report
        status = RunStatus.OK if result.report_id else RunStatus.PARTIAL
        return result, status

    return _execute(
        RunKind.RESEARCH,
        body,
        session_factory=session_factory,
        flow_input=request.model_dump(mode="json"),
    )


# ---------------------------------------------------------------------------
# Composite flows
# ---------------------------------------------------------------------------

def _bounded(value, fallback, low, high):
    return max(low, min(high, fallback if value is None else value))


def _curate_each(
    document_ids: list[UUID],
    *,
    enable_categorization: bool,
    llm: StructuredLLM,
    session_factory: SessionFactory,
) -> tuple[list[CurateResult], list[DocumentFailure]]:
    """One curate run per document; a failing document is recorded and skipped."""
    curated: list[CurateResult] = []
    failures: list[DocumentFailure] = []
    for document_id in document_ids:
        try:
            curated.append(
                run_curate_flow(
                    CurateRequest(document_id=document_id, enable_categorization=enable_categorization),
                    llm=llm,
                    session_factory=session_factory,
                )
            )
        except Exception as e:
            logger.warning(
                "Curate failed for document %s: %s",
                document_id,
                e,
                extra={"document_id": str(document_id), "flow": RunKind.CURATE.value},
            )
            failures.append(DocumentFailure(document_id=document_id, message=str(e)))
    return curated, failures


def run_distill_curate_flow(
    request: DistillCurateRequest,
    *,
    llm: StructuredLLM | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> DistillCurateResult:
    """
    Curate each targeted document through its own curate run, then distill
    them in one distill run. Curate failures are collected per document;
    a distill failure propagates after the curate runs have been recorded.
    """
    llm = llm or OpenAIStructuredLLM()
    settings = get_settings()
    limit = _bounded(request.limit, settings.DISTILL_DEFAULT_LIMIT, 1, settings.DISTILL_MAX_LIMIT)

    db = session_factory()
    try:
        store = DocumentStore(db)
        if request.document_ids:
            targets = store.by_ids(request.document_ids, limit)
        elif request.tag:
            targets = store.by_tag(request.tag, limit)
        else:
            targets = store.recent(limit)
    finally:
        db.close()
    target_ids = [d.id for d in targets]

    curated, failures = _curate_each(
        target_ids,
        enable_categorization=request.enable_categorization,
        llm=llm,
        session_factory=session_factory,
    )
    distilled = run_distill_flow(
        DistillRequest(
            document_ids=request.document_ids or target_ids or None,
            tag=request.tag,
            limit=limit,
            day=request.day,
        ),
        llm=llm,
        session_factory=session_factory,
    )

    result = DistillCurateResult(
        distill_run_id=distilled.run_id,
        curate_run_ids=[c.run_id for c in curated if c.run_id],
        curated_document_ids=[c.document_id for c in curated],
        counts=DistillCurateCounts(
            docs_targeted=len(target_ids),
            docs_curated=len(curated),
            docs_curate_failed=len(failures),
            docs_processed=distilled.docs_processed,
            concepts_proposed=distilled.concepts_proposed,
            flashcards_proposed=distilled.flashcards_proposed,
        ),
        errors=failures,
    )
    logger.info(
        "Distill-curate finished: %d curated, %d failed",
        len(curated),
        len(failures),
        extra={"run_id": str(distilled.run_id), "flow": "distill-curate"},
    )
    return result


def _run_topic(
    db: Session,
    steps: StepEventAdapter,
    topic: SavedTopicOut,
    request: TopicReportRequest,
    day: str,
    *,
    llm: StructuredLLM,
    search: BaseSearchConnector,
    session_factory: SessionFactory,
) -> TopicResult:
    """curate -> web scout -> distill for one topic; each stage fails on its own."""
    result = TopicResult(
        topic_id=topic.id,
        topic_name=topic.name,
        goal=topic.goal,
        focus_tags=topic.focus_tags,
    )
    docs_limit = _bounded(request.max_docs_per_topic, topic.max_docs_per_run, 1, 20)
    correlation_id = f"topic:{topic.id}"
    steps.on_step_start(
        correlation_id,
        StepKind.FLOW,
        {
            "flow": f"topic_{topic_slug(topic.name)}",
            "input": {"topic_id": str(topic.id), "goal": topic.goal, "focus_tags": topic.focus_tags},
        },
    )

    try:
        store = DocumentStore(db)
        docs = store.by_tags(topic.focus_tags, docs_limit) if topic.focus_tags else store.recent(docs_limit)
        result.document_ids = [d.id for d in docs]
    except Exception as e:
        db.rollback()
        result.errors.append(TopicStageError(stage="topic-setup", message=str(e)))
    result.counts.docs_matched = len(result.document_ids)

    curated, failures = _curate_each(
        result.document_ids,
        enable_categorization=request.enable_categorization,
        llm=llm,
        session_factory=session_factory,
    )
    result.run_ids.curate = [c.run_id for c in curated if c.run_id]
    result.counts.docs_curated = len(curated)
    result.counts.docs_curate_failed = len(failures)
    result.errors += [
        TopicStageError(stage="curate", message=f.message, document_id=f.document_id) for f in failures
    ]

    try:
        scouted = run_web_scout_flow(
            WebScoutRequest(
                goal=topic.goal,
                mode="derive-from-vault",
                focus_tags=topic.focus_tags or None,
                min_quality_results=_bounded(request.min_quality_results, topic.min_quality_results, 1, 20),
                min_relevance=_bounded(request.min_relevance, topic.min_relevance_score, 0.0, 1.0),
                max_iterations=_bounded(request.max_iterations, topic.max_iterations, 1, 20),
                max_queries=_bounded(request.max_queries, topic.max_queries, 1, 50),
                day=day,
            ),
            llm=llm,
            search=search,
            session_factory=session_factory,
        )
        result.run_ids.web_scout = scouted.run_id
        result.proposals = scouted.proposals
        result.counts.web_proposals = scouted.counts.proposals_created
    except Exception as e:
        logger.warning("Topic web scout failed: %s", e, extra={"topic_id": str(topic.id), "flow": "topic-report"})
        result.errors.append(TopicStageError(stage="web-scout", message=str(e)))

    try:
        distilled = run_distill_flow(
            DistillRequest(
                document_ids=result.document_ids or None,
                tag=topic.focus_tags[0] if topic.focus_tags else None,
                limit=docs_limit,
                day=day,
            ),
            llm=llm,
            session_factory=session_factory,
        )
        result.run_ids.distill = distilled.run_id
        result.counts.docs_processed = distilled.docs_processed
        result.counts.concepts_proposed = distilled.concepts_proposed
        result.counts.flashcards_proposed = distilled.flashcards_proposed
    except Exception as e:
        logger.warning("Topic distill failed: %s", e, extra={"topic_id": str(topic.id), "flow": "topic-report"})
        result.errors.append(TopicStageError(stage="distill", message=str(e)))

    steps.on_step_end(
        correlation_id,
        output={
            "run_ids": result.run_ids.model_dump(mode="json"),
            "counts": result.counts.model_dump(),
            "errors": [e.model_dump(mode="json") for e in result.errors],
        },
        status=StepStatus.ERROR if result.errors else StepStatus.OK,
    )
    return result


def run_topic_report_flow(
    request: TopicReportRequest | None = None,
    *,
    llm: StructuredLLM | None = None,
    search: BaseSearchConnector | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> TopicReportResult:
    """
    Replay every selected saved topic through curate, web scout and distill,
    then store one report for the day. Each stage runs as its own traced run;
    this run records one flow step per topic and finishes "partial" when any
    stage of any topic failed.
    """
    request = request or TopicReportRequest()
    llm = llm or OpenAIStructuredLLM()
    search = search or get_search_connector()
    day = request.day or today_key()

    def body(db: Session, on_step: StepSink, run_id: UUID):
        steps = StepEventAdapter(on_step, run_id=run_id)
        with steps.step(
            "load_topics",
            StepKind.TOOL,
            {
                "tool": "vault-db",
                "step": "topic_report_load_topics",
                "args": {
                    "topic_ids": [str(t) for t in request.topic_ids or []],
                    "include_inactive": request.include_inactive,
                },
            },
        ) as handle:
            topics = [
                SavedTopicOut.model_validate(t)
                for t in select_topics(db, request.topic_ids, include_inactive=request.include_inactive)
            ]
            handle.output = {"topic_ids": [str(t.id) for t in topics], "names": [t.name for t in topics]}
        if not topics:
            raise VaultflowError("No saved topics available; create one via POST /topics first")

        results = [
            _run_topic(db, steps, topic, request, day, llm=llm, search=search, session_factory=session_factory)
            for topic in topics
        ]
        counts = aggregate_counts(results)

        report_id = None
        if request.save_report:
            with steps.step(
                "save_report",
                StepKind.TOOL,
                {"tool": "vault-db", "step": "topic_report_save_report", "args": {"day": day}},
            ) as handle:
                report_id = insert_report(
                    db,
                    build_report_content(day, results, counts),
                    run_id=run_id,
                    day=day,
                    source_refs={
                        "topic_ids": [str(t.topic_id) for t in results],
                        "run_ids": [t.run_ids.model_dump(mode="json") for t in results],
                        "proposal_urls": proposal_urls(results),
                    },
                )
                handle.output = {"report_id": report_id}
        else:
            steps.record(
                StepKind.FLOW,
                {"flow": "topic_report_save_report"},
                status=StepStatus.SKIPPED,
                output={"reason": "save_report disabled"},
            )

        result = TopicReportResult(
            run_id=run_id,
            day=day,
            report_id=report_id,
            topics_processed=len(results),
            topics=results,
            counts=counts,
        )
        status = RunStatus.PARTIAL if any(t.errors for t in results) else RunStatus.OK
        return result, status

    return _execute(
        RunKind.TOPIC_REPORT,
        body,
        session_factory=session_factory,
        flow_input=request.model_dump(mode="json"),
    )


# ---------------------------------------------------------------------------
# Background execution
# ---------------------------------------------------------------------------

def start_web_scout_flow(
    request: WebScoutRequest,
    *,
    session_factory: SessionFactory = SessionLocal,
) -> RunStarted:
    """Create the run now and hand the rest to a worker; callers poll the trace."""
    payload = request.model_dump(mode="json")
    db = session_factory()
    try:
        run_id = create_run(db, RunKind.WEB_SCOUT.value, {"input": payload, "background": True})
    finally:
        db.close()

    celery_app.send_task(
        "vaultflow.services.flows.run_web_scout_task",
        args=[str(run_id), payload],
        queue="flows",
    )
    logger.info("Web scout queued", extra={"run_id": str(run_id), "flow": RunKind.WEB_SCOUT.value})
    return RunStarted(run_id=run_id)


@celery_app.task(name="vaultflow.services.flows.run_web_scout_task", queue="flows")
def run_web_scout_task(run_id: str, payload: dict) -> dict:
    result = run_web_scout_flow(WebScoutRequest.model_validate(payload), run_id=UUID(run_id))
    return result.model_dump(mode="json")


@celery_app.task(name="vaultflow.services.flows.run_scheduled_web_scout", queue="flows")
def run_scheduled_web_scout() -> dict:
    settings = get_settings()
    request = WebScoutRequest(
        goal=settings.WEB_SCOUT_DAILY_GOAL,
        mode="derive-from-vault",
        allowed_domains=settings.web_scout_allowed_domains or None,
        import_to_library=True,
        max_iterations=settings.WEB_SCOUT_MAX_ITERATIONS,
        max_queries=settings.WEB_SCOUT_MAX_QUERIES,
        min_quality_results=settings.WEB_SCOUT_MIN_QUALITY_RESULTS,
        min_relevance=settings.WEB_SCOUT_MIN_RELEVANCE,
        results_per_query=settings.WEB_SCOUT_RESULTS_PER_QUERY,
    )
    result = run_web_scout_flow(request)
    return {
        "run_id": str(result.run_id),
        "termination_reason": result.termination_reason,
        "counts": result.counts.model_dump(),
    }


@celery_app.task(name="vaultflow.services.flows.sweep_stale_runs_task")
def sweep_stale_runs_task() -> int:
    db = SessionLocal()
    try:
        return sweep_stale_runs(db, get_settings().STALE_RUN_TIMEOUT_MINUTES)
    finally:
        db.close()


@celery_app.task(name="vaultflow.services.flows.run_scheduled_topic_report", queue="flows")
def run_scheduled_topic_report() -> dict:
    result = run_topic_report_flow(TopicReportRequest(save_report=True))
    return {
        "run_id": str(result.run_id),
        "report_id": str(result.report_id) if result.report_id else None,
        "day": result.day,
        "topics_processed": result.topics_processed,
        "counts": result.counts.model_dump(),
    }
