# backend/vaultflow/services/research.py
"""
Research: derive a goal from the vault, scout the web for it, and write the
findings up as a report that replaces the day's previous report.
"""
from __future__ import annotations

import logging
import re
from uuid import UUID

from sqlalchemy.orm import Session

from ..schemas.artifacts import ReportContent
from ..schemas.flows import ResearchRequest, ResearchResult, WebProposal, WebScoutRequest
from ..schemas.llm import ReportSynthesis
from .artifacts import today_key
from .connectors.base import BaseSearchConnector
from .documents import DocumentStore
from .errors import VaultflowError
from .llm import StructuredLLM
from .reports import insert_report
from .step_events import StepEventAdapter, StepKind, StepSink
from .web_scout import WebScout

logger = logging.getLogger(__name__)

TOP_TAG_COUNT = 5
MAX_SUMMARY_CHARS = 500

SYNTHESIZE_SYSTEM_PROMPT = """You write research reports from web resources found for a learning goal.

Write a markdown report with these sections:
1. Title (H1): a descriptive title for this research session
2. Executive Summary: 2-3 sentences on what was found
3. Key Findings: one H3 per resource covering what it is, why it is relevant, key takeaways
4. Synthesis: how the resources relate to each other and to the goal
5. Recommended Next Steps: 3-5 actionable items
6. Sources: numbered list with titles and URLs

Also return the title, the executive summary and the topics covered as separate fields.
Keep it concise and actionable."""


def goal_from_tags(tags: list[str]) -> str:
    return f"Find high-quality learning resources about: {', '.join(tags)}"


def _proposal_block(index: int, p: WebProposal) -> str:
    return (
        f'[{index}] "{p.title}" ({p.url})\n'
        f"    Score: {p.relevance_score:.2f} | Type: {p.content_type}\n"
        f"    Summary: {p.summary}\n"
        f"    Topics: {', '.join(p.topics)}\n"
        f"    Reasoning: {'; '.join(p.reasoning)}"
    )


def fallback_report(goal: str, proposals: list[WebProposal], topics: list[str]) -> ReportSynthesis:
    """Plain bullet-list report used when synthesis fails."""
    lines = [
        f"# Research: {goal}",
        "",
        "## Summary",
        "",
        f"Found {len(proposals)} resource(s) related to: {goal}.",
        f"Vault topics: {', '.join(topics) or 'none'}.",
        "",
        "## Resources",
        "",
    ]
    for i, p in enumerate(proposals, start=1):
        lines.append(f"{i}. **[{p.title}]({p.url})** (score: {p.relevance_score:.2f})")
        lines.append(f"   {p.summary}")
    return ReportSynthesis(
        title=f"Research: {goal}",
        executive_summary=f"Found {len(proposals)} resource(s) related to: {goal}.",
        markdown="\n".join(lines),
        topics_covered=sorted({t for p in proposals for t in p.topics}),
    )


def _summary_from_markdown(markdown: str) -> str:
    match = re.search(
        r"##\s+(?:Executive\s+)?Summary\s*\n+([\s\S]*?)(?=\n##|\n#\s|$)",
        markdown,
        re.IGNORECASE,
    )
    if match:
        return match.group(1).strip()[:MAX_SUMMARY_CHARS]
    for line in markdown.splitlines():
        if line.strip() and not line.startswith("#"):
            return line.strip()[:MAX_SUMMARY_CHARS]
    return ""


class Researcher:
    def __init__(
        self,
        db: Session,
        llm: StructuredLLM,
        search: BaseSearchConnector,
        *,
        store: DocumentStore | None = None,
        on_step: StepSink | None = None,
        run_id: UUID | None = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.search = search
        self.store = store or DocumentStore(db)
        self.on_step = on_step
        self.run_id = run_id
        self.steps = StepEventAdapter(on_step, run_id=run_id)

    def run(self, request: ResearchRequest) -> ResearchResult:
        day = request.day or today_key()

        with self.steps.step("derive_goal", StepKind.FLOW, {"flow": "research_derive_goal"}) as handle:
            top_tags = self.store.top_tags(TOP_TAG_COUNT)
            if request.goal:
                goal = request.goal
            elif top_tags:
                goal = goal_from_tags(top_tags)
            else:
                raise VaultflowError("No tags in vault; import documents first")
            handle.output = {"goal": goal, "tags": top_tags}

        scout = WebScout(
            self.db,
            self.llm,
            self.search,
            store=self.store,
            on_step=self.on_step,
            run_id=self.run_id,
        )
        scout_result = scout.run(
            WebScoutRequest(
                goal=goal,
                mode="derive-from-vault",
                focus_tags=top_tags or None,
                min_quality_results=3,
                max_iterations=5,
                max_queries=10,
                day=day,
            )
        )
        proposals = scout_result.proposals

        if not proposals:
            self.steps.record(
                StepKind.FLOW,
                {"flow": "research_synthesize"},
                status="skipped",
                output={"reason": "No proposals from web scout"},
            )
            return ResearchResult(
                run_id=self.run_id,
                goal=goal,
                termination_reason=scout_result.termination_reason,
            )

        report = self._synthesize(goal, proposals, top_tags)

        with self.steps.step(
            "save_report",
            StepKind.TOOL,
            {"tool": "vault-db", "step": "research_save_report", "args": {"day": day}},
        ) as handle:
            report_id = insert_report(
                self.db,
                ReportContent(
                    title=report.title,
                    markdown=report.markdown,
                    executive_summary=report.executive_summary,
                    sources_count=len(proposals),
                    topics_covered=report.topics_covered,
                    goal=goal,
                ),
                run_id=self.run_id,
                day=day,
                source_refs={"proposals": [{"url": p.url, "title": p.title} for p in proposals]},
            )
            handle.output = {"report_id": report_id}

        return ResearchResult(
            run_id=self.run_id,
            goal=goal,
            report_id=report_id,
            proposals_found=len(proposals),
            termination_reason=scout_result.termination_reason,
        )

    def _synthesize(self, goal: str, proposals: list[WebProposal], topics: list[str]) -> ReportSynthesis:
        prompt = (
            f"GOAL: {goal}\nVAULT TOPICS: {', '.join(topics) or 'none'}\n\nRESOURCES FOUND:\n"
            + "\n\n".join(_proposal_block(i, p) for i, p in enumerate(proposals, start=1))
        )
        self.steps.on_step_start(
            "synthesize",
            StepKind.LLM,
            {"purpose": "research_synthesize", "model": getattr(self.llm, "model", None), "prompt_chars": len(prompt)},
        )
        try:
            report = self.llm.invoke(SYNTHESIZE_SYSTEM_PROMPT, prompt, ReportSynthesis)
        except Exception as e:
            logger.warning(
                "Report synthesis failed, using fallback: %s",
                e,
                extra={"run_id": str(self.run_id) if self.run_id else None, "flow": "research"},
            )
            report = fallback_report(goal, proposals, topics)
            self.steps.on_step_end(
                "synthesize",
                error={"message": str(e), "nonCritical": True},
                output={"title": report.title, "fallback": True},
            )
            return report

        if not report.executive_summary:
            report.executive_summary = _summary_from_markdown(report.markdown)
        if not report.topics_covered:
            report.topics_covered = sorted({t for p in proposals for t in p.topics})
        self.steps.on_step_end("synthesize", output={"title": report.title, "sources": len(proposals)})
        return report
