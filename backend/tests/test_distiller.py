"""
Tests for distiller.py - batch distillation of documents into proposed
concepts and flashcards.
"""
import pytest

from vaultflow.models.artifact import Artifact
from vaultflow.models.concept import Concept
from vaultflow.models.flashcard import Flashcard
from vaultflow.schemas.flows import DistillRequest
from vaultflow.schemas.llm import ConceptExtraction, FlashcardGeneration
from vaultflow.services import distiller as distiller_module
from vaultflow.services.distiller import Distiller, _flashcard_title
from vaultflow.services.documents import DocumentStore
from vaultflow.services.errors import LLMError

from tests.fixtures.fakes import FakeLLM, add_document

DAY = "2025-05-01"

TWO_CONCEPTS = {
    "concepts": [
        {"label": "Ownership", "type": "principle", "summary": "Each value has one owner.", "evidence": ["one owner"]},
        {"label": "Borrowing", "type": "definition", "summary": "References without ownership.", "evidence": []},
    ]
}

TWO_CARDS = {
    "flashcards": [
        {"format": "qa", "front": "What is ownership?", "back": "One owner per value.", "concept_label": "ownership"},
        {"format": "cloze", "front": "A {{borrow}} is a reference.", "back": "A borrow is a reference.", "concept_label": "Unknown"},
    ]
}


def _llm(overrides=None):
    responses = {ConceptExtraction: TWO_CONCEPTS, FlashcardGeneration: TWO_CARDS}
    responses.update(overrides or {})
    return FakeLLM(responses)


class TestBatch:
    """Happy path over a small batch."""

    def test_processes_every_document(self, db, sink):
        a = add_document(db, "Rust A")
        b = add_document(db, "Rust B")
        result = Distiller(db, _llm(), on_step=sink).run(DistillRequest(document_ids=[a.id, b.id], day=DAY))

        assert result.docs_processed == 2
        assert result.concepts_proposed == 4
        assert result.flashcards_proposed == 4
        assert len(result.artifact_ids) == 8
        assert db.query(Concept).count() == 4
        assert db.query(Flashcard).count() == 4

        artifacts = db.query(Artifact).all()
        assert {a.status for a in artifacts} == {"proposed"}
        assert {a.day for a in artifacts} == {DAY}
        assert {a.agent for a in artifacts} == {"distiller"}

    def test_flashcards_link_to_concepts_by_label(self, db):
        doc = add_document(db, "Rust")
        Distiller(db, _llm()).run(DistillRequest(document_ids=[doc.id], day=DAY))

        ownership = db.query(Concept).filter(Concept.label == "Ownership").one()
        cards = {c.format: c for c in db.query(Flashcard).all()}
        assert cards["qa"].concept_id == ownership.id
        assert cards["cloze"].concept_id is None

        qa_artifact = (
            db.query(Artifact).filter(Artifact.kind == "flashcard", Artifact.title.like("%ownership%")).one()
        )
        assert qa_artifact.source_refs["concept_id"] == str(ownership.id)
        assert qa_artifact.content["document_title"] == "Rust"

    def test_empty_batch(self, db, sink):
        llm = _llm()
        result = Distiller(db, llm, on_step=sink).run(DistillRequest(tag="nothing-tagged", day=DAY))
        assert result.docs_processed == 0
        assert llm.calls == []
        assert sink.find("fetch_documents", "ok")[0].output["count"] == 0

    def test_limit_bounds_batch(self, db):
        for i in range(3):
            add_document(db, f"doc {i}")
        result = Distiller(db, _llm()).run(DistillRequest(limit=1, day=DAY))
        assert result.docs_processed == 1


class TestSelection:
    def test_ids_take_priority_over_tag(self, db):
        tagged = add_document(db, "tagged", tags=["rust"])
        chosen = add_document(db, "chosen")
        llm = _llm()
        Distiller(db, llm).run(DistillRequest(document_ids=[chosen.id], tag="rust", day=DAY))

        prompts = [prompt for name, prompt in llm.calls if name == "ConceptExtraction"]
        assert len(prompts) == 1
        assert '"chosen"' in prompts[0]
        assert tagged.title not in prompts[0]

    def test_tag_selection(self, db):
        add_document(db, "tagged", tags=["rust"])
        add_document(db, "untagged")
        result = Distiller(db, _llm()).run(DistillRequest(tag="rust", day=DAY))
        assert result.docs_processed == 1


class TestFailureIsolation:
    def test_failed_extraction_yields_zero_for_that_document(self, db, sink):
        a = add_document(db, "A")
        b = add_document(db, "B")
        llm = _llm({ConceptExtraction: [LLMError("timeout"), TWO_CONCEPTS]})
        result = Distiller(db, llm, on_step=sink).run(DistillRequest(document_ids=[a.id, b.id], day=DAY))

        assert result.docs_processed == 2
        assert result.concepts_proposed == 2
        assert result.flashcards_proposed == 2
        # No flashcard call for the document without concepts
        assert llm.count("FlashcardGeneration") == 1
        assert len(sink.find("extract_concepts", "error")) == 1

    def test_failed_generation_keeps_concepts(self, db):
        doc = add_document(db, "A")
        llm = _llm({FlashcardGeneration: LLMError("bad json")})
        result = Distiller(db, llm).run(DistillRequest(document_ids=[doc.id], day=DAY))
        assert result.concepts_proposed == 2
        assert result.flashcards_proposed == 0
        assert result.docs_processed == 1

    def test_failed_item_insert_skips_only_that_item(self, db, sink, monkeypatch):
        doc = add_document(db, "A")
        real_add = distiller_module.add_artifact

        def flaky_add(session, data):
            if data.title == "Borrowing":
                raise RuntimeError("constraint violated")
            return real_add(session, data)

        monkeypatch.setattr(distiller_module, "add_artifact", flaky_add)
        result = Distiller(db, _llm(), on_step=sink).run(DistillRequest(document_ids=[doc.id], day=DAY))

        assert result.concepts_proposed == 1
        assert db.query(Concept).count() == 1
        assert db.query(Concept).one().label == "Ownership"
        assert result.flashcards_proposed == 2
        persist = sink.find("persist_concepts")[0]
        assert persist.status == "error"
        assert persist.output == {"created": ["Ownership"], "attempted": 2}

    def test_fetch_failure_propagates(self, db, sink):
        class BrokenStore(DocumentStore):
            def recent(self, limit):
                raise RuntimeError("vault offline")

        with pytest.raises(RuntimeError):
            Distiller(db, _llm(), store=BrokenStore(db), on_step=sink).run(DistillRequest(day=DAY))
        assert sink.find("fetch_documents", "error")
        assert sink.find("distiller.run", "error")


class TestHelpers:
    def test_flashcard_title(self):
        assert _flashcard_title("short") == "Flashcard: short"
        long_front = "x" * 60
        assert _flashcard_title(long_front) == "Flashcard: " + "x" * 50 + "..."
