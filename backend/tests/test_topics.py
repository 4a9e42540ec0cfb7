"""
Tests for saved_topics.py and topic_reports.py - topic selection and the
topic report write-up.
"""
from uuid import uuid4

from vaultflow.schemas.flows import TopicCounts, TopicResult, TopicStageError, WebProposal
from vaultflow.schemas.topics import SavedTopicCreate
from vaultflow.services.saved_topics import create_saved_topic, select_topics
from vaultflow.services.topic_reports import (
    aggregate_counts,
    build_markdown,
    build_report_content,
    proposal_urls,
    topic_slug,
)

DAY = "2025-10-01"


def _proposal(url, score=0.9):
    return WebProposal(
        url=url,
        title=f"Title {url}",
        summary="s",
        relevance_reason="r",
        relevance_score=score,
        content_type="article",
        source_query="q",
    )


def _topic(name, errors=(), proposals=(), **counts):
    return TopicResult(
        topic_id=uuid4(),
        topic_name=name,
        goal=f"learn {name}",
        counts=TopicCounts(**counts),
        errors=list(errors),
        proposals=list(proposals),
    )


class TestSavedTopics:
    def test_defaults_and_clamping(self, db):
        topic = create_saved_topic(db, SavedTopicCreate(
            name="  Rust  ", goal="g", focus_tags=["Rust", "rust", " "], max_queries=500, min_relevance_score=-1,
        ))
        assert topic.name == "Rust"
        assert topic.focus_tags == ["rust"]
        assert topic.max_queries == 50
        assert topic.min_relevance_score == 0.0
        assert topic.max_docs_per_run == 5
        assert topic.is_active is True

    def test_select_active_by_default(self, db):
        active = create_saved_topic(db, SavedTopicCreate(name="a", goal="g"))
        inactive = create_saved_topic(db, SavedTopicCreate(name="b", goal="g", is_active=False))

        assert [t.id for t in select_topics(db)] == [active.id]
        assert {t.id for t in select_topics(db, include_inactive=True)} == {active.id, inactive.id}

    def test_select_by_ids(self, db):
        a = create_saved_topic(db, SavedTopicCreate(name="a", goal="g"))
        create_saved_topic(db, SavedTopicCreate(name="b", goal="g"))
        off = create_saved_topic(db, SavedTopicCreate(name="c", goal="g", is_active=False))

        assert [t.id for t in select_topics(db, [a.id, off.id, uuid4()])] == [a.id]
        assert len(select_topics(db, [a.id, off.id], include_inactive=True)) == 2


class TestTopicReport:
    def test_slug(self):
        assert topic_slug("Rust: Async & Tokio!") == "rust_async_tokio"
        assert topic_slug("!!!") == "topic"
        assert len(topic_slug("x" * 100)) == 40

    def test_aggregate_counts(self):
        topics = [
            _topic("a", docs_matched=2, docs_curated=1, docs_curate_failed=1, web_proposals=3),
            _topic("b", docs_matched=1, docs_curated=1, concepts_proposed=4),
        ]
        counts = aggregate_counts(topics)
        assert counts.topics_targeted == 2
        assert counts.docs_matched == 3
        assert counts.docs_curated == 2
        assert counts.docs_curate_failed == 1
        assert counts.web_proposals == 3
        assert counts.concepts_proposed == 4

    def test_proposal_urls_are_unique(self):
        topics = [
            _topic("a", proposals=[_proposal("https://a"), _proposal("https://b")]),
            _topic("b", proposals=[_proposal("https://b")]),
        ]
        assert proposal_urls(topics) == ["https://a", "https://b"]

    def test_markdown_lists_alerts(self):
        doc_id = uuid4()
        failing = _topic("Rust", errors=[
            TopicStageError(stage="curate", message="bad json", document_id=doc_id),
            TopicStageError(stage="web-scout", message="timeout"),
        ])
        markdown = build_markdown(DAY, [failing], aggregate_counts([failing]))

        assert markdown.startswith(f"# Topic Workflow Report - {DAY}")
        assert f"- Rust [curate]: bad json (document: {doc_id})" in markdown
        assert "- Rust [web-scout]: timeout" in markdown
        assert "- Web scout run: failed/not-run" in markdown
        assert "Top proposed resources: none" in markdown

    def test_no_alerts_section_without_errors(self):
        topic = _topic("Rust", proposals=[_proposal(f"https://r{i}", 0.5) for i in range(7)])
        content = build_report_content(DAY, [topic], aggregate_counts([topic]))

        assert "## Pipeline Alerts" not in content.markdown
        assert content.markdown.count("(score: 0.50, type: article)") == 5
        assert content.sources_count == 7
        assert content.topics_covered == ["Rust"]
        assert content.executive_summary.startswith("Processed 1 topic(s).")
