# backend/vaultflow/services/distiller.py
"""
Batch distillation: turn a bounded batch of vault documents into proposed
concepts and flashcards.

The orchestrator is an explicit state machine driven by a document cursor:

    FETCH -> EXTRACT -> PERSIST_CONCEPTS -> GENERATE -> PERSIST_FLASHCARDS
              ^                                              |
              +------------------ next document -------------+   -> DONE

Failure policy:
- FETCH failing is a batch-level failure and propagates to the caller.
- A failed extraction or generation call yields zero output for that document.
- A failed concept/flashcard insert skips that single item.
Every fetched document therefore advances the cursor exactly once.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.config import Settings, get_settings
from ..models.concept import Concept
from ..models.flashcard import Flashcard
from ..schemas.artifacts import ArtifactInput, ConceptContent, FlashcardContent
from ..schemas.flows import DistillRequest, DistillResult
from ..schemas.llm import (
    ConceptExtraction,
    ExtractedConcept,
    FlashcardGeneration,
    GeneratedFlashcard,
)
from .artifacts import add_artifact, today_key
from .documents import DocumentSnapshot, DocumentStore
from .llm import StructuredLLM
from .step_events import StepEventAdapter, StepKind, StepSink

logger = logging.getLogger(__name__)

AGENT_NAME = "distiller"

MAX_CONCEPTS_PER_DOC = 5
MAX_LABEL_CHARS = 100
MAX_SUMMARY_CHARS = 500
MAX_EVIDENCE_ITEMS = 3
MAX_FRONT_CHARS = 1000
MAX_BACK_CHARS = 2000

EXTRACT_SYSTEM_PROMPT = """You extract key concepts from a document for a personal knowledge vault.

Extract 2-5 key concepts. For each concept return:
- label: a short name (2-5 words)
- type: one of definition, principle, framework, procedure, fact
- summary: a 1-2 sentence explanation
- evidence: 1-2 exact quotes from the text that support it

Only extract concepts the text directly supports. Keep summaries concise."""

FLASHCARD_SYSTEM_PROMPT = """You write flashcards for spaced repetition.

Write 1-2 flashcards per concept, mixing formats:
- "qa": a question on the front, the answer on the back
- "cloze": a statement with a {{cloze deletion}} on the front, the full statement on the back

Set concept_label to the label of the concept each card tests.
Questions must be specific; answers concise but complete."""


class DistillPhase(str, enum.Enum):
    FETCH = "fetch"
    EXTRACT = "extract_concepts"
    PERSIST_CONCEPTS = "persist_concepts"
    GENERATE = "generate_flashcards"
    PERSIST_FLASHCARDS = "persist_flashcards"
    DONE = "done"


@dataclass
class DocumentWork:
    """Per-document scratch state; discarded when the cursor advances."""

    doc: DocumentSnapshot
    concepts: list[ExtractedConcept] = field(default_factory=list)
    concept_ids: dict[str, UUID] = field(default_factory=dict)  # lowercased label -> id
    flashcards: list[GeneratedFlashcard] = field(default_factory=list)


@dataclass
class DistillState:
    day: str
    limit: int
    phase: DistillPhase = DistillPhase.FETCH
    documents: list[DocumentSnapshot] = field(default_factory=list)
    current_index: int = 0
    work: DocumentWork | None = None
    result: DistillResult = field(default_factory=DistillResult)


def _clip_concept(c: ExtractedConcept) -> ExtractedConcept:
    return ExtractedConcept(
        label=c.label.strip()[:MAX_LABEL_CHARS],
        type=c.type,
        summary=c.summary.strip()[:MAX_SUMMARY_CHARS],
        evidence=[e for e in c.evidence if e][:MAX_EVIDENCE_ITEMS],
    )


def _flashcard_title(front: str) -> str:
    return f"Flashcard: {front[:50]}" + ("..." if len(front) > 50 else "")


class Distiller:
    def __init__(
        self,
        db: Session,
        llm: StructuredLLM,
        *,
        store: DocumentStore | None = None,
        on_step: StepSink | None = None,
        run_id: UUID | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.store = store or DocumentStore(db)
        self.run_id = run_id
        self.settings = settings or get_settings()
        self.steps = StepEventAdapter(on_step, run_id=run_id)
        self._handlers: dict[DistillPhase, Callable[[DistillState, DistillRequest], DistillPhase]] = {
            DistillPhase.FETCH: self._fetch,
            DistillPhase.EXTRACT: self._extract,
            DistillPhase.PERSIST_CONCEPTS: self._persist_concepts,
            DistillPhase.GENERATE: self._generate,
            DistillPhase.PERSIST_FLASHCARDS: self._persist_flashcards,
        }

    def run(self, request: DistillRequest) -> DistillResult:
        limit = request.limit or self.settings.DISTILL_DEFAULT_LIMIT
        state = DistillState(
            day=request.day or today_key(),
            limit=max(1, min(limit, self.settings.DISTILL_MAX_LIMIT)),
        )
        state.result.run_id = self.run_id

        with self.steps.step(
            "distiller",
            StepKind.AGENT,
            {"agent": AGENT_NAME, "node": "run", "state": request.model_dump(mode="json")},
        ) as handle:
            while state.phase is not DistillPhase.DONE:
                state.phase = self._handlers[state.phase](state, request)
            handle.output = state.result.model_dump(mode="json", exclude={"artifact_ids", "run_id"})

        logger.info(
            "Distillation finished: %d docs, %d concepts, %d flashcards",
            state.result.docs_processed,
            state.result.concepts_proposed,
            state.result.flashcards_proposed,
            extra={"run_id": str(self.run_id) if self.run_id else None, "flow": "distill"},
        )
        return state.result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _fetch(self, state: DistillState, request: DistillRequest) -> DistillPhase:
        if request.document_ids:
            selector = {"by": "ids", "ids": [str(i) for i in request.document_ids]}
        elif request.tag:
            selector = {"by": "tag", "tag": request.tag}
        else:
            selector = {"by": "recent"}

        with self.steps.step(
            "fetch_documents",
            StepKind.TOOL,
            {"tool": "document-store", "step": "fetch_documents", "args": {**selector, "limit": state.limit}},
        ) as handle:
            if request.document_ids:
                documents = self.store.by_ids(request.document_ids, state.limit)
            elif request.tag:
                documents = self.store.by_tag(request.tag, state.limit)
            else:
                documents = self.store.recent(state.limit)
            handle.output = {"count": len(documents), "document_ids": [str(d.id) for d in documents]}

        state.documents = documents
        state.current_index = 0
        return DistillPhase.EXTRACT if documents else DistillPhase.DONE

    def _extract(self, state: DistillState, request: DistillRequest) -> DistillPhase:
        doc = state.documents[state.current_index]
        state.work = DocumentWork(doc=doc)

        body = doc.content[: self.settings.DISTILL_MAX_DOC_CHARS]
        prompt = f'DOCUMENT TITLE: "{doc.title}"\nDOCUMENT CONTENT:\n{body}'
        correlation_id = f"extract_concepts:{doc.id}"
        self.steps.on_step_start(
            correlation_id,
            StepKind.LLM,
            {
                "purpose": "extract_concepts",
                "model": getattr(self.llm, "model", None),
                "prompt_chars": len(prompt),
                "input": {"document_id": str(doc.id), "title": doc.title},
            },
        )
        try:
            extraction = self.llm.invoke(EXTRACT_SYSTEM_PROMPT, prompt, ConceptExtraction)
            concepts = [_clip_concept(c) for c in extraction.concepts[:MAX_CONCEPTS_PER_DOC]]
        except Exception as e:
            logger.warning(
                "Concept extraction failed for document %s: %s",
                doc.id,
                e,
                extra={"run_id": str(self.run_id) if self.run_id else None, "document_id": str(doc.id)},
            )
            self.steps.on_step_end(correlation_id, error=e)
            return DistillPhase.PERSIST_CONCEPTS

        state.work.concepts = concepts
        self.steps.on_step_end(
            correlation_id,
            output={"concepts": [c.label for c in state.work.concepts]},
        )
        return DistillPhase.PERSIST_CONCEPTS

    def _persist_concepts(self, state: DistillState, request: DistillRequest) -> DistillPhase:
        work = state.work
        if not work.concepts:
            return self._advance(state)

        created: list[str] = []
        for concept in work.concepts:
            try:
                row = Concept(
                    document_id=work.doc.id,
                    label=concept.label,
                    type=concept.type,
                    summary=concept.summary,
                    evidence=concept.evidence,
                )
                self.db.add(row)
                self.db.flush()
                concept_id = row.id

                artifact = add_artifact(
                    self.db,
                    ArtifactInput(
                        run_id=self.run_id,
                        agent=AGENT_NAME,
                        kind="concept",
                        day=state.day,
                        title=concept.label,
                        content=ConceptContent(
                            type=concept.type,
                            summary=concept.summary,
                            evidence=concept.evidence,
                            document_title=work.doc.title,
                        ).model_dump(),
                        source_refs={"document_id": str(work.doc.id), "concept_id": str(concept_id)},
                    ),
                )
                artifact_id = artifact.id
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.warning(
                    "Skipping concept %r after insert failure",
                    concept.label,
                    exc_info=True,
                    extra={"run_id": str(self.run_id) if self.run_id else None, "document_id": str(work.doc.id)},
                )
                continue

            work.concept_ids[concept.label.lower()] = concept_id
            state.result.concepts_proposed += 1
            state.result.artifact_ids.append(artifact_id)
            created.append(concept.label)

        self.steps.record(
            StepKind.TOOL,
            {"tool": "vault-db", "step": "persist_concepts", "args": {"document_id": str(work.doc.id)}},
            status="ok" if len(created) == len(work.concepts) else "error",
            output={"created": created, "attempted": len(work.concepts)},
        )
        return DistillPhase.GENERATE

    def _generate(self, state: DistillState, request: DistillRequest) -> DistillPhase:
        work = state.work
        concepts_text = "\n".join(
            f"{i}. {c.label} ({c.type}): {c.summary}" for i, c in enumerate(work.concepts, start=1)
        )
        prompt = f'DOCUMENT: "{work.doc.title}"\nCONCEPTS:\n{concepts_text}'
        correlation_id = f"generate_flashcards:{work.doc.id}"
        self.steps.on_step_start(
            correlation_id,
            StepKind.LLM,
            {
                "purpose": "generate_flashcards",
                "model": getattr(self.llm, "model", None),
                "prompt_chars": len(prompt),
                "input": {"document_id": str(work.doc.id), "concept_count": len(work.concepts)},
            },
        )
        try:
            generation = self.llm.invoke(FLASHCARD_SYSTEM_PROMPT, prompt, FlashcardGeneration)
            flashcards = [
                GeneratedFlashcard(
                    format=f.format,
                    front=f.front[:MAX_FRONT_CHARS],
                    back=f.back[:MAX_BACK_CHARS],
                    concept_label=f.concept_label,
                )
                for f in generation.flashcards
            ]
        except Exception as e:
            logger.warning(
                "Flashcard generation failed for document %s: %s",
                work.doc.id,
                e,
                extra={"run_id": str(self.run_id) if self.run_id else None, "document_id": str(work.doc.id)},
            )
            self.steps.on_step_end(correlation_id, error=e)
            return DistillPhase.PERSIST_FLASHCARDS

        work.flashcards = flashcards
        self.steps.on_step_end(correlation_id, output={"flashcards": len(work.flashcards)})
        return DistillPhase.PERSIST_FLASHCARDS

    def _persist_flashcards(self, state: DistillState, request: DistillRequest) -> DistillPhase:
        work = state.work
        created = 0
        for card in work.flashcards:
            concept_id = work.concept_ids.get((card.concept_label or "").strip().lower())
            try:
                row = Flashcard(
                    document_id=work.doc.id,
                    concept_id=concept_id,
                    format=card.format,
                    front=card.front,
                    back=card.back,
                )
                self.db.add(row)
                self.db.flush()
                flashcard_id = row.id

                source_refs = {"document_id": str(work.doc.id), "flashcard_id": str(flashcard_id)}
                if concept_id is not None:
                    source_refs["concept_id"] = str(concept_id)
                artifact = add_artifact(
                    self.db,
                    ArtifactInput(
                        run_id=self.run_id,
                        agent=AGENT_NAME,
                        kind="flashcard",
                        day=state.day,
                        title=_flashcard_title(card.front),
                        content=FlashcardContent(
                            format=card.format,
                            front=card.front,
                            back=card.back,
                            document_title=work.doc.title,
                        ).model_dump(),
                        source_refs=source_refs,
                    ),
                )
                artifact_id = artifact.id
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.warning(
                    "Skipping flashcard after insert failure",
                    exc_info=True,
                    extra={"run_id": str(self.run_id) if self.run_id else None, "document_id": str(work.doc.id)},
                )
                continue

            created += 1
            state.result.flashcards_proposed += 1
            state.result.artifact_ids.append(artifact_id)

        if work.flashcards:
            self.steps.record(
                StepKind.TOOL,
                {"tool": "vault-db", "step": "persist_flashcards", "args": {"document_id": str(work.doc.id)}},
                status="ok" if created == len(work.flashcards) else "error",
                output={"created": created, "attempted": len(work.flashcards)},
            )
        return self._advance(state)

    def _advance(self, state: DistillState) -> DistillPhase:
        state.result.docs_processed += 1
        state.current_index += 1
        state.work = None
        if state.current_index < len(state.documents):
            return DistillPhase.EXTRACT
        return DistillPhase.DONE
