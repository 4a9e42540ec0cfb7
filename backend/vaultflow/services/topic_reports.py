# backend/vaultflow/services/topic_reports.py
"""
Write-up for a topic report run: aggregate counts across topics and a
markdown report with a pipeline-alerts section for every recorded stage
error. No LLM involved, so the report is always produced.
"""
from __future__ import annotations

import re

from ..schemas.artifacts import ReportContent
from ..schemas.flows import TopicReportCounts, TopicResult

TOP_PROPOSALS_PER_TOPIC = 5


def topic_slug(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")[:40]
    return slug or "topic"


def aggregate_counts(topics: list[TopicResult]) -> TopicReportCounts:
    total = TopicReportCounts(topics_targeted=len(topics))
    for topic in topics:
        for field, value in topic.counts.model_dump().items():
            setattr(total, field, getattr(total, field) + value)
    return total


def proposal_urls(topics: list[TopicResult]) -> list[str]:
    seen: list[str] = []
    for topic in topics:
        for proposal in topic.proposals:
            if proposal.url not in seen:
                seen.append(proposal.url)
    return seen


def executive_summary(topics: list[TopicResult], counts: TopicReportCounts) -> str:
    return " ".join([
        f"Processed {len(topics)} topic(s).",
        f"Curated {counts.docs_curated}/{counts.docs_matched} matched document(s).",
        f"Created {counts.web_proposals} web proposal(s), {counts.concepts_proposed} concept proposal(s), "
        f"and {counts.flashcards_proposed} flashcard proposal(s).",
    ])


def _topic_section(topic: TopicResult) -> list[str]:
    run_ids = topic.run_ids
    counts = topic.counts
    lines = [
        f"### {topic.topic_name}",
        "",
        f"- Goal: {topic.goal}",
        f"- Focus tags: {', '.join(topic.focus_tags) or 'none'}",
        f"- Matched documents: {', '.join(str(d) for d in topic.document_ids) or 'none'}",
        f"- Curate runs: {', '.join(str(r) for r in run_ids.curate) or 'none'}",
        f"- Web scout run: {run_ids.web_scout or 'failed/not-run'}",
        f"- Distill run: {run_ids.distill or 'failed/not-run'}",
        f"- Output counts: docs={counts.docs_processed}, concepts={counts.concepts_proposed}, "
        f"flashcards={counts.flashcards_proposed}, proposals={counts.web_proposals}",
        "",
    ]
    if not topic.proposals:
        return lines + ["Top proposed resources: none", ""]

    lines.append("Top proposed resources:")
    for p in topic.proposals[:TOP_PROPOSALS_PER_TOPIC]:
        lines.append(f"- [{p.title}]({p.url}) (score: {p.relevance_score:.2f}, type: {p.content_type})")
    lines.append("")
    return lines


def build_markdown(day: str, topics: list[TopicResult], counts: TopicReportCounts) -> str:
    lines = [
        f"# Topic Workflow Report - {day}",
        "",
        "## Executive Summary",
        "",
        executive_summary(topics, counts),
        "",
        "## Aggregate Counts",
        "",
        f"- Topics targeted: {counts.topics_targeted}",
        f"- Documents matched: {counts.docs_matched}",
        f"- Documents curated: {counts.docs_curated}",
        f"- Curate failures: {counts.docs_curate_failed}",
        f"- Web proposals: {counts.web_proposals}",
        f"- Distill docs processed: {counts.docs_processed}",
        f"- Concepts proposed: {counts.concepts_proposed}",
        f"- Flashcards proposed: {counts.flashcards_proposed}",
        "",
    ]

    alerts = [
        f"- {topic.topic_name} [{e.stage}]: {e.message}"
        + (f" (document: {e.document_id})" if e.document_id else "")
        for topic in topics
        for e in topic.errors
    ]
    if alerts:
        lines += ["## Pipeline Alerts", "", *alerts, ""]

    lines += ["## Topic Breakdown", ""]
    for topic in topics:
        lines += _topic_section(topic)
    return "\n".join(lines)


def build_report_content(day: str, topics: list[TopicResult], counts: TopicReportCounts) -> ReportContent:
    return ReportContent(
        title=f"Topic Workflow Report - {day}",
        markdown=build_markdown(day, topics, counts),
        executive_summary=executive_summary(topics, counts),
        sources_count=len(proposal_urls(topics)),
        topics_covered=[t.topic_name for t in topics],
    )
