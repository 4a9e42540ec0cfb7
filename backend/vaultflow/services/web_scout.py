# backend/vaultflow/services/web_scout.py
"""
WebScout: bounded search -> filter -> evaluate -> decide -> refine loop.

Each iteration runs exactly one query. After every iteration the loop stops
when one of these holds, checked in order:

1. quality-met                 qualifying results >= min_quality_results
2. iteration-budget-exhausted  iterations == max_iterations
3. query-budget-exhausted      queries executed == max_queries
4. no-queries-available        nothing left to run and refinement produced
                               no new query (also: derive mode found nothing)

Otherwise the next query comes from the pending queue, or from an LLM
rewrite of the last query when the queue is empty.

Results are de-duplicated (within the run and against the vault) and
domain-filtered before evaluation, so rejected URLs never cost an LLM call.
Qualifying results become web-proposal artifacts and, when importing is
enabled, vault documents.
"""
from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ..schemas.artifacts import ArtifactInput, WebProposalContent
from ..schemas.flows import TerminationReason, WebProposal, WebScoutCounts, WebScoutRequest, WebScoutResult
from ..schemas.llm import DerivedQueries
from .artifacts import insert_artifact, today_key
from .connectors.base import BaseSearchConnector, SearchResult
from .documents import DocumentSnapshot, DocumentStore
from .llm import StructuredLLM
from .step_events import StepEventAdapter, StepKind, StepSink
from .web_scoring import ResultEvaluator, ScoredResult, domain_in, extract_domain

logger = logging.getLogger(__name__)

AGENT_NAME = "web-scout"
PROPOSAL_KIND = "web-proposal"

MAX_DERIVED_QUERIES = 5
DERIVE_EXCERPT_CHARS = 1500

DERIVE_SYSTEM_PROMPT = """You are analysing a user's knowledge vault to suggest web searches for related content.

Based on the documents and the user's goal, suggest 3-5 search queries that would find:
1. Deeper dives into topics the user is learning
2. Related concepts that complement their knowledge
3. Recent developments in these areas
4. Practical applications or tutorials

Queries must be specific and actionable; avoid broad searches.
Priority 1 is highest, 5 is lowest."""

REFINE_SYSTEM_PROMPT = (
    "You are a search query optimizer. Given the original query and feedback about what is "
    "missing from the results, produce a single improved search query. Reply with ONLY the "
    "refined query string, no explanation."
)


class ScoutPhase(str, enum.Enum):
    PREPARE = "prepare_queries"
    SEARCH = "search"
    FILTER = "filter"
    EVALUATE = "evaluate"
    DECIDE = "decide"
    NEXT_QUERY = "next_query"
    FINALIZE = "finalize"
    DONE = "done"


@dataclass
class ScoutState:
    request: WebScoutRequest
    day: str
    phase: ScoutPhase = ScoutPhase.PREPARE
    pending: deque[str] = field(default_factory=deque)
    current_query: str | None = None
    iteration: int = 0
    batch: list[SearchResult] = field(default_factory=list)
    seen_urls: set[str] = field(default_factory=set)
    qualifying: list[ScoredResult] = field(default_factory=list)
    proposal_reasoning: dict[str, list[str]] = field(default_factory=dict)
    vault_docs: list[DocumentSnapshot] = field(default_factory=list)
    termination_reason: TerminationReason | None = None
    counts: WebScoutCounts = field(default_factory=WebScoutCounts)
    queries_used: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    proposals: list[WebProposal] = field(default_factory=list)
    artifact_ids: list[UUID] = field(default_factory=list)
    imported_ids: list[UUID] = field(default_factory=list)


class WebScout:
    def __init__(
        self,
        db: Session,
        llm: StructuredLLM,
        search: BaseSearchConnector,
        *,
        store: DocumentStore | None = None,
        evaluator: ResultEvaluator | None = None,
        on_step: StepSink | None = None,
        run_id: UUID | None = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.search = search
        self.store = store or DocumentStore(db)
        self.evaluator = evaluator or ResultEvaluator(llm)
        self.run_id = run_id
        self.steps = StepEventAdapter(on_step, run_id=run_id)
        self._handlers: dict[ScoutPhase, Callable[[ScoutState], ScoutPhase]] = {
            ScoutPhase.PREPARE: self._prepare,
            ScoutPhase.SEARCH: self._search,
            ScoutPhase.FILTER: self._filter,
            ScoutPhase.EVALUATE: self._evaluate,
            ScoutPhase.DECIDE: self._decide,
            ScoutPhase.NEXT_QUERY: self._next_query,
            ScoutPhase.FINALIZE: self._finalize,
        }

    def run(self, request: WebScoutRequest) -> WebScoutResult:
        state = ScoutState(request=request, day=request.day or today_key())

        with self.steps.step(
            "web_scout",
            StepKind.AGENT,
            {"agent": AGENT_NAME, "node": "run", "state": request.model_dump(mode="json")},
        ) as handle:
            while state.phase is not ScoutPhase.DONE:
                state.phase = self._handlers[state.phase](state)
            result = self._result(state)
            handle.output = {
                "termination_reason": result.termination_reason,
                "counts": result.counts.model_dump(),
            }

        logger.info(
            "WebScout finished (%s): %d proposals after %d iterations",
            result.termination_reason,
            len(result.proposals),
            result.counts.iterations,
            extra={"run_id": str(self.run_id) if self.run_id else None, "flow": "web-scout"},
        )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _prepare(self, state: ScoutState) -> ScoutPhase:
        req = state.request
        if req.mode == "explicit-query":
            state.pending.append(req.query or req.goal)
            state.reasoning.append(f"Explicit query mode: starting with '{state.pending[0]}'")
        else:
            for q in self._derive_queries(state):
                state.pending.append(q)
            if not state.pending:
                state.reasoning.append("No queries could be derived from the vault")
                return self._terminate(state, "no-queries-available")
            state.reasoning.append(f"Derived {len(state.pending)} queries from vault documents")
        return ScoutPhase.NEXT_QUERY

    def _next_query(self, state: ScoutState) -> ScoutPhase:
        if state.pending:
            query = state.pending.popleft()
        elif state.current_query is not None:
            query = self._refine_query(state)
            if not query or query in state.queries_used:
                state.reasoning.append("Refinement produced no new query")
                return self._terminate(state, "no-queries-available")
        else:
            return self._terminate(state, "no-queries-available")

        state.current_query = query
        state.iteration += 1
        state.counts.iterations = state.iteration
        return ScoutPhase.SEARCH

    def _search(self, state: ScoutState) -> ScoutPhase:
        req = state.request
        query = state.current_query
        state.queries_used.append(query)
        state.counts.queries_executed += 1

        correlation_id = f"search:{state.iteration}"
        self.steps.on_step_start(
            correlation_id,
            StepKind.TOOL,
            {
                "tool": self.search.name,
                "step": "search_web",
                "args": {"query": query, "max_results": req.results_per_query, "include_domains": req.allowed_domains},
            },
        )
        try:
            results = self.search.search(
                query,
                req.results_per_query,
                include_domains=req.allowed_domains or None,
            )
        except Exception as e:
            logger.warning(
                "Web search failed for %s: %s",
                query,
                e,
                extra={"run_id": str(self.run_id) if self.run_id else None, "step": "search_web"},
            )
            state.batch = []
            state.reasoning.append(f"Iteration {state.iteration}: search for '{query}' failed")
            self.steps.on_step_end(correlation_id, error=e)
            return ScoutPhase.DECIDE

        state.batch = list(results)
        state.counts.results_fetched += len(results)
        self.steps.on_step_end(correlation_id, output={"results": len(results)})
        return ScoutPhase.FILTER

    def _filter(self, state: ScoutState) -> ScoutPhase:
        allowed = state.request.allowed_domains
        fresh: list[SearchResult] = []
        batch_urls: set[str] = set()
        for r in state.batch:
            if r.url in state.seen_urls or r.url in batch_urls:
                state.counts.duplicates_filtered += 1
                continue
            batch_urls.add(r.url)
            if allowed and not domain_in(extract_domain(r.url), allowed):
                state.counts.domain_filtered += 1
                continue
            fresh.append(r)
        state.seen_urls.update(batch_urls)

        new_urls = set(self.store.filter_new_urls([r.url for r in fresh]))
        in_vault = len(fresh) - len(new_urls)
        state.counts.duplicates_filtered += in_vault
        state.batch = [r for r in fresh if r.url in new_urls]

        if in_vault:
            state.reasoning.append(
                f"Iteration {state.iteration}: skipped {in_vault} results already in the vault"
            )
        return ScoutPhase.EVALUATE

    def _evaluate(self, state: ScoutState) -> ScoutPhase:
        req = state.request
        qualified = 0
        for r in state.batch:
            scored = self.evaluator.evaluate(r, req.goal, source_query=state.current_query)
            state.counts.results_evaluated += 1
            if scored.evaluated_by != "heuristic":
                state.counts.llm_evaluations += 1
            if scored.relevance_score >= req.min_relevance:
                qualified += 1
                state.qualifying.append(scored)
                state.proposal_reasoning[r.url] = [
                    f"Found via query '{state.current_query}' in iteration {state.iteration}",
                    f"Scored {scored.relevance_score:.2f} ({scored.evaluated_by}) against threshold {req.min_relevance:.2f}",
                    scored.reasoning,
                ]

        self.steps.record(
            StepKind.AGENT,
            {"agent": AGENT_NAME, "node": "evaluate_results", "state": {"iteration": state.iteration}},
            output={"evaluated": len(state.batch), "qualifying": qualified, "total_qualifying": len(state.qualifying)},
        )
        state.reasoning.append(
            f"Iteration {state.iteration}: '{state.current_query}' gave {len(state.batch)} new results, "
            f"{qualified} qualifying ({len(state.qualifying)}/{req.min_quality_results} total)"
        )
        return ScoutPhase.DECIDE

    def _decide(self, state: ScoutState) -> ScoutPhase:
        req = state.request
        if len(state.qualifying) >= req.min_quality_results:
            return self._terminate(state, "quality-met")
        if state.iteration >= req.max_iterations:
            return self._terminate(state, "iteration-budget-exhausted")
        if state.counts.queries_executed >= req.max_queries:
            return self._terminate(state, "query-budget-exhausted")
        return ScoutPhase.NEXT_QUERY

    def _finalize(self, state: ScoutState) -> ScoutPhase:
        req = state.request
        state.qualifying.sort(key=lambda s: s.relevance_score, reverse=True)
        state.proposals = [self._to_proposal(state, s) for s in state.qualifying]

        for proposal in state.proposals:
            try:
                artifact_id = insert_artifact(
                    self.db,
                    ArtifactInput(
                        run_id=self.run_id,
                        agent=AGENT_NAME,
                        kind=PROPOSAL_KIND,
                        day=state.day,
                        title=proposal.title,
                        content={
                            **WebProposalContent(
                                url=proposal.url,
                                summary=proposal.summary,
                                relevance_reason=proposal.relevance_reason,
                                relevance_score=proposal.relevance_score,
                                content_type=proposal.content_type,
                                topics=proposal.topics,
                                source_query=proposal.source_query,
                                excerpt=proposal.excerpt,
                            ).model_dump(),
                            "reasoning": proposal.reasoning,
                        },
                        source_refs={"query": proposal.source_query, "url": proposal.url},
                    ),
                )
            except Exception:
                logger.warning(
                    "Failed to store web proposal %s",
                    proposal.url,
                    exc_info=True,
                    extra={"run_id": str(self.run_id) if self.run_id else None},
                )
                continue
            state.artifact_ids.append(artifact_id)
            state.counts.proposals_created += 1

            if req.import_to_library:
                self._import(state, proposal)

        self.steps.record(
            StepKind.TOOL,
            {"tool": "vault-db", "step": "persist_proposals", "args": {"import_to_library": req.import_to_library}},
            status="ok" if state.counts.proposals_created == len(state.proposals) else "error",
            output={
                "proposals": state.counts.proposals_created,
                "imported": state.counts.documents_imported,
                "skipped": state.counts.documents_skipped,
            },
        )
        return ScoutPhase.DONE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _terminate(self, state: ScoutState, reason: TerminationReason) -> ScoutPhase:
        state.termination_reason = reason
        state.reasoning.append(f"Stopping: {reason}")
        return ScoutPhase.FINALIZE

    def _derive_queries(self, state: ScoutState) -> list[str]:
        req = state.request
        if req.focus_tags:
            docs = self.store.by_tags(req.focus_tags, req.derive_limit)
        else:
            docs = self.store.recent(req.derive_limit)
        state.vault_docs = docs
        if not docs:
            return []

        summaries = "\n\n---\n\n".join(
            f'Document {i}: "{d.title}"\nTags: {", ".join(d.tags) or "none"}\n'
            f"Excerpt: {d.content[:DERIVE_EXCERPT_CHARS]}"
            for i, d in enumerate(docs, start=1)
        )
        prompt = f"GOAL: {req.goal}\n\nDOCUMENTS IN VAULT:\n{summaries}"

        self.steps.on_step_start(
            "derive_queries",
            StepKind.LLM,
            {"purpose": "derive_queries", "model": getattr(self.llm, "model", None), "prompt_chars": len(prompt)},
        )
        try:
            derived = self.llm.invoke(DERIVE_SYSTEM_PROMPT, prompt, DerivedQueries)
        except Exception as e:
            logger.warning("Query derivation failed: %s", e, extra={"run_id": str(self.run_id) if self.run_id else None})
            self.steps.on_step_end("derive_queries", error=e)
            return []

        ordered = sorted(derived.queries, key=lambda q: q.priority)
        queries: list[str] = []
        for q in ordered:
            text = q.query.strip()
            if text and text not in queries:
                queries.append(text)
        queries = queries[:MAX_DERIVED_QUERIES]
        self.steps.on_step_end("derive_queries", output={"queries": queries})
        return queries

    def _refine_query(self, state: ScoutState) -> str | None:
        req = state.request
        original = state.current_query
        topics = sorted({t for s in state.qualifying for t in s.topics})
        feedback = (
            f"Goal: {req.goal}. Found {len(state.qualifying)} of {req.min_quality_results} results "
            f"with relevance >= {req.min_relevance:.2f}. "
            + (f"Topics covered so far: {', '.join(topics)}. " if topics else "")
            + "Need more specific, higher-quality sources."
        )
        correlation_id = f"refine:{state.iteration}"
        self.steps.on_step_start(
            correlation_id,
            StepKind.LLM,
            {"purpose": "refine_query", "model": getattr(self.llm, "model", None), "input": {"original": original}},
        )
        try:
            refined = self.llm.complete(
                REFINE_SYSTEM_PROMPT,
                f"Original query: {original}\nFeedback: {feedback}",
            )
        except Exception as e:
            logger.warning("Query refinement failed: %s", e, extra={"run_id": str(self.run_id) if self.run_id else None})
            self.steps.on_step_end(correlation_id, error=e)
            return original

        refined = refined.strip().strip('"').strip() or original
        self.steps.on_step_end(correlation_id, output={"refined": refined})
        state.reasoning.append(f"Refined query '{original}' -> '{refined}'")
        return refined

    def _to_proposal(self, state: ScoutState, scored: ScoredResult) -> WebProposal:
        r = scored.result
        return WebProposal(
            url=r.url,
            title=r.title,
            summary=r.snippet[:500],
            relevance_reason=scored.reasoning,
            relevance_score=scored.relevance_score,
            content_type=scored.content_type,
            topics=scored.topics,
            source_query=scored.source_query,
            excerpt=r.snippet[:300] or None,
            reasoning=[line for line in state.proposal_reasoning.get(r.url, []) if line],
        )

    def _import(self, state: ScoutState, proposal: WebProposal) -> None:
        try:
            doc = self.store.import_document(
                url=proposal.url,
                title=proposal.title,
                content=proposal.summary,
                tags=proposal.topics,
                source="web",
            )
        except Exception:
            logger.warning(
                "Failed to import %s",
                proposal.url,
                exc_info=True,
                extra={"run_id": str(self.run_id) if self.run_id else None},
            )
            state.counts.documents_skipped += 1
            return
        if doc is None:
            state.counts.documents_skipped += 1
            return
        state.counts.documents_imported += 1
        state.imported_ids.append(doc.id)

    def _result(self, state: ScoutState) -> WebScoutResult:
        return WebScoutResult(
            run_id=self.run_id,
            proposals=state.proposals,
            artifact_ids=state.artifact_ids,
            imported_document_ids=state.imported_ids,
            termination_reason=state.termination_reason,
            counts=state.counts,
            queries_used=state.queries_used,
            reasoning=state.reasoning,
        )
