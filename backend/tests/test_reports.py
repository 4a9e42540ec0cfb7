"""
Tests for reports.py - research reports stored as approve-on-insert artifacts.
"""
from uuid import uuid4

from vaultflow.schemas.artifacts import ArtifactInput, ReportContent
from vaultflow.services.artifacts import get_artifact, insert_artifact
from vaultflow.services.reports import get_report, insert_report, list_reports, mark_report_read


def _content(title):
    return ReportContent(title=title, markdown=f"# {title}\n\nBody", sources_count=2, topics_covered=["rust"])


class TestInsertReport:
    def test_report_is_approved_immediately(self, db):
        rid = insert_report(db, _content("R1"), day="2025-04-01")
        report = get_report(db, rid)
        assert report.status == "approved"
        assert report.reviewed_at is not None
        assert report.content["markdown"].startswith("# R1")

    def test_new_report_supersedes_same_day(self, db):
        first = insert_report(db, _content("R1"), day="2025-04-01")
        second = insert_report(db, _content("R2"), day="2025-04-01")
        other_day = insert_report(db, _content("R3"), day="2025-04-02")

        db.expire_all()
        assert get_report(db, first).status == "superseded"
        assert get_report(db, second).status == "approved"
        assert get_report(db, other_day).status == "approved"

    def test_list_reports_only_approved_newest_first(self, db):
        insert_report(db, _content("old"), day="2025-04-01")
        insert_report(db, _content("replaced"), day="2025-04-02")
        insert_report(db, _content("current"), day="2025-04-02")

        assert [r.title for r in list_reports(db)] == ["current", "old"]


class TestReportQueries:
    def test_get_report_ignores_other_artifacts(self, db):
        aid = insert_artifact(db, ArtifactInput(agent="distiller", kind="concept", day="2025-04-01", title="c"))
        assert get_artifact(db, aid) is not None
        assert get_report(db, aid) is None
        assert get_report(db, uuid4()) is None

    def test_mark_report_read_once(self, db):
        rid = insert_report(db, _content("R1"), day="2025-04-01")
        assert mark_report_read(db, rid) is True
        assert mark_report_read(db, rid) is False
        assert mark_report_read(db, uuid4()) is False
