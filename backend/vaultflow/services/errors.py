from __future__ import annotations

from uuid import UUID


class VaultflowError(Exception):
    """Base class for errors raised by vaultflow services."""


class RunNotFound(VaultflowError):
    def __init__(self, run_id: UUID | str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class DocumentNotFound(VaultflowError):
    def __init__(self, document_id: UUID | str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class LLMError(VaultflowError):
    """Structured model call failed: transport, timeout, or unparseable output."""


class SearchError(VaultflowError):
    """Web search provider call failed."""
