"""
Tests for artifacts.py - artifact lifecycle and the one-approved-per-key rule.
"""
import threading
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from vaultflow.models.artifact import Artifact
from vaultflow.schemas.artifacts import ArtifactInput
from vaultflow.services.artifacts import (
    approve_artifact,
    count_by_status,
    get_artifact,
    insert_artifact,
    list_active,
    list_by_agent_kind,
    list_by_day,
    list_inbox,
    mark_read,
    reject_artifact,
)

DAY = "2025-03-01"


def _insert(db, title="a", agent="distiller", kind="concept", day=DAY):
    return insert_artifact(db, ArtifactInput(agent=agent, kind=kind, day=day, title=title, content={"t": title}))


def _status(db, artifact_id):
    db.expire_all()
    return get_artifact(db, artifact_id).status


class TestInsert:
    def test_insert_is_proposed(self, db):
        aid = _insert(db)
        artifact = get_artifact(db, aid)
        assert artifact.status == "proposed"
        assert artifact.reviewed_at is None
        assert artifact.content == {"t": "a"}

    def test_day_must_be_iso_date(self):
        with pytest.raises(ValueError):
            ArtifactInput(agent="a", kind="k", day="03/01/2025", title="t")


class TestApprove:
    """Approving supersedes the previous holder of the key."""

    def test_approve_proposed(self, db):
        aid = _insert(db)
        assert approve_artifact(db, aid) is True
        artifact = get_artifact(db, aid)
        assert artifact.status == "approved"
        assert artifact.reviewed_at is not None

    def test_second_approval_supersedes_first(self, db):
        first = _insert(db, "first")
        second = _insert(db, "second")
        assert approve_artifact(db, first)
        assert approve_artifact(db, second)

        assert _status(db, first) == "superseded"
        assert _status(db, second) == "approved"

    def test_sequence_keeps_exactly_one_approved(self, db):
        ids = [_insert(db, f"a{i}") for i in range(4)]
        for aid in ids:
            assert approve_artifact(db, aid)
            db.expire_all()
            approved = (
                db.query(Artifact)
                .filter(Artifact.agent == "distiller", Artifact.kind == "concept", Artifact.status == "approved")
                .all()
            )
            assert [a.id for a in approved] == [aid]

    def test_other_keys_unaffected(self, db):
        concept = _insert(db, kind="concept")
        card = _insert(db, kind="flashcard")
        other_day = _insert(db, kind="concept", day="2025-03-02")
        for aid in (concept, card, other_day):
            assert approve_artifact(db, aid)
        assert {_status(db, a) for a in (concept, card, other_day)} == {"approved"}

    def test_approve_missing_or_not_proposed(self, db):
        assert approve_artifact(db, uuid4()) is False
        aid = _insert(db)
        assert reject_artifact(db, aid)
        assert approve_artifact(db, aid) is False
        assert _status(db, aid) == "rejected"

    def test_approve_twice_is_false(self, db):
        aid = _insert(db)
        assert approve_artifact(db, aid)
        assert approve_artifact(db, aid) is False

    def test_storage_rejects_two_approved(self, db):
        a = _insert(db, "a")
        b = _insert(db, "b")
        approve_artifact(db, a)
        row = db.get(Artifact, b)
        row.status = "approved"
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_concurrent_approvals_leave_one_approved(self, db, session_factory):
        for round_no in range(3):
            day = f"2025-04-0{round_no + 1}"
            ids = [_insert(db, f"r{round_no}-{i}", day=day) for i in range(2)]
            barrier = threading.Barrier(len(ids))
            outcomes = {}

            def approve(aid):
                session = session_factory()
                try:
                    barrier.wait(timeout=5)
                    outcomes[aid] = approve_artifact(session, aid)
                except (OperationalError, IntegrityError) as e:
                    # Lost the race at the storage level; nothing was committed
                    outcomes[aid] = e
                finally:
                    session.close()

            threads = [threading.Thread(target=approve, args=(aid,)) for aid in ids]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=30)

            assert set(outcomes) == set(ids)
            assert any(v is True for v in outcomes.values())
            statuses = sorted(_status(db, aid) for aid in ids)
            assert statuses.count("approved") == 1
            assert statuses in (["approved", "superseded"], ["approved", "proposed"])


class TestRejectAndRead:
    def test_reject_only_proposed(self, db):
        aid = _insert(db)
        assert reject_artifact(db, aid) is True
        assert reject_artifact(db, aid) is False
        assert reject_artifact(db, uuid4()) is False

    def test_rejecting_approved_is_refused(self, db):
        aid = _insert(db)
        approve_artifact(db, aid)
        assert reject_artifact(db, aid) is False
        assert _status(db, aid) == "approved"

    def test_mark_read_once(self, db):
        aid = _insert(db)
        assert mark_read(db, aid) is True
        assert mark_read(db, aid) is False
        db.expire_all()
        assert get_artifact(db, aid).read_at is not None
        assert get_artifact(db, aid).status == "proposed"


class TestQueries:
    def test_inbox_active_and_counts(self, db):
        a = _insert(db, "a")
        b = _insert(db, "b")
        c = _insert(db, "c", kind="flashcard")
        approve_artifact(db, a)
        approve_artifact(db, b)
        reject_artifact(db, c)
        d = _insert(db, "d", kind="flashcard")

        assert [x.id for x in list_inbox(db, DAY)] == [d]
        assert [x.id for x in list_active(db, DAY)] == [b]
        counts = count_by_status(db, DAY)
        assert (counts.proposed, counts.approved, counts.rejected, counts.superseded) == (1, 1, 1, 1)

    def test_counts_for_empty_day(self, db):
        counts = count_by_status(db, "1999-01-01")
        assert counts.model_dump() == {"proposed": 0, "approved": 0, "rejected": 0, "superseded": 0}

    def test_list_by_day_kind_filter(self, db):
        _insert(db, "a", kind="concept")
        card = _insert(db, "b", kind="flashcard")
        assert [x.id for x in list_by_day(db, DAY, kinds=["flashcard"])] == [card]

    def test_list_by_agent_kind(self, db):
        _insert(db, "old", agent="web-scout", kind="web-proposal", day="2025-02-01")
        new = _insert(db, "new", agent="web-scout", kind="web-proposal", day="2025-02-02")
        _insert(db, "other", agent="distiller", kind="concept")

        rows = list_by_agent_kind(db, "web-scout", "web-proposal")
        assert [r.title for r in rows] == ["new", "old"]
        rows = list_by_agent_kind(db, "web-scout", "web-proposal", day="2025-02-02", status="proposed")
        assert [r.id for r in rows] == [new]
