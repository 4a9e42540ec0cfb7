# backend/vaultflow/services/curator.py
"""
Curator: tag, categorise and link a single vault document.

Tag extraction failing fails the run. Categorisation is best-effort and
falls back to "uncategorized".
"""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from ..schemas.flows import CurateRequest, CurateResult
from ..schemas.llm import Categorization, TagExtraction
from .documents import DocumentStore
from .errors import DocumentNotFound
from .llm import StructuredLLM
from .step_events import StepEventAdapter, StepKind, StepSink
from .tags import finalize_tags

logger = logging.getLogger(__name__)

AGENT_NAME = "curator"
UNCATEGORIZED = "uncategorized"
MAX_TAG_INPUT_CHARS = 12000
MAX_RELATED_DOCS = 5

TAGS_SYSTEM_PROMPT = """Extract 3-8 topical tags for this document.

Rules:
- lowercase, 1-3 words each
- concrete subjects (technologies, methods, fields), not generic words like "article" or "notes"
- no punctuation"""

CATEGORIZE_SYSTEM_PROMPT = """Pick the single best category for a document from its tags.
Allowed categories: learning, software engineering, ai systems, finance, productivity, other."""


class Curator:
    def __init__(
        self,
        db: Session,
        llm: StructuredLLM,
        *,
        store: DocumentStore | None = None,
        on_step: StepSink | None = None,
        run_id: UUID | None = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.store = store or DocumentStore(db)
        self.run_id = run_id
        self.steps = StepEventAdapter(on_step, run_id=run_id)

    def run(self, request: CurateRequest) -> CurateResult:
        with self.steps.step(
            "load_document",
            StepKind.TOOL,
            {"tool": "vault-db", "step": "load_document", "args": {"document_id": request.document_id}},
        ) as handle:
            doc = self.store.get(request.document_id)
            if doc is None:
                raise DocumentNotFound(request.document_id)
            handle.output = {"id": doc.id, "title": doc.title}

        tags = self._extract_tags(doc.content)

        if request.enable_categorization:
            category = self._categorize(tags)
        else:
            category = UNCATEGORIZED
            self.steps.record(
                StepKind.AGENT,
                {"agent": AGENT_NAME, "node": "categorize", "state": {"tags": tags}},
                status="skipped",
                output={"reason": "categorization disabled"},
            )

        with self.steps.step(
            "find_related",
            StepKind.TOOL,
            {"tool": "vault-db", "step": "find_related_docs", "args": {"tags": tags}},
        ) as handle:
            related = self.store.find_related(doc.id, tags, limit=MAX_RELATED_DOCS)
            handle.output = {"related": related}

        with self.steps.step(
            "persist_tags",
            StepKind.TOOL,
            {"tool": "vault-db", "step": "persist_tags", "args": {"tags": tags, "category": category}},
        ) as handle:
            saved = self.store.set_tags(doc.id, tags)
            self.store.set_category(doc.id, category)
            handle.output = {"saved": len(saved)}

        logger.info(
            "Curated document: %d tags, category %s, %d related",
            len(saved),
            category,
            len(related),
            extra={"document_id": str(doc.id), "run_id": str(self.run_id) if self.run_id else None},
        )
        return CurateResult(
            run_id=self.run_id,
            document_id=doc.id,
            tags=saved,
            category=category,
            related_document_ids=related,
        )

    def _extract_tags(self, content: str) -> list[str]:
        excerpt = content[:MAX_TAG_INPUT_CHARS]
        with self.steps.step(
            "extract_tags",
            StepKind.LLM,
            {"purpose": "extract_tags", "model": getattr(self.llm, "model", None), "prompt_chars": len(excerpt)},
        ) as handle:
            extraction = self.llm.invoke(TAGS_SYSTEM_PROMPT, excerpt, TagExtraction)
            tags = finalize_tags(extraction.tags)
            handle.output = {"tags": tags}
        return tags

    def _categorize(self, tags: list[str]) -> str:
        self.steps.on_step_start(
            "categorize",
            StepKind.LLM,
            {"purpose": "categorize", "model": getattr(self.llm, "model", None), "input": {"tags": tags}},
        )
        try:
            result = self.llm.invoke(CATEGORIZE_SYSTEM_PROMPT, f"Tags: {', '.join(tags) or 'none'}", Categorization)
        except Exception as e:
            logger.warning("Categorization failed: %s", e, extra={"step": "categorize"})
            self.steps.on_step_end(
                "categorize",
                error={"message": str(e), "nonCritical": True},
            )
            return UNCATEGORIZED
        self.steps.on_step_end("categorize", output={"category": result.category})
        return result.category
