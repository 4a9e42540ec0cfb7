"""Tag normalisation shared by curation, import, and query derivation."""
from __future__ import annotations

import re
from typing import Iterable

STOP_TAGS = frozenset(
    {
        "introduction",
        "overview",
        "guide",
        "article",
        "notes",
        "note",
        "example",
        "examples",
        "basics",
        "concepts",
        "summary",
        "summaries",
        "tutorial",
        "how to",
    }
)

MIN_TAG_CHARS = 3
MAX_TAG_CHARS = 40
MAX_TAG_WORDS = 3
MAX_FINAL_TAGS = 8

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_tag(tag: str) -> str | None:
    """Lowercase, strip punctuation, collapse whitespace; None if the tag is filtered out."""
    t = _NON_ALNUM_RE.sub(" ", tag.lower().strip())
    t = _WHITESPACE_RE.sub(" ", t).strip()

    if not (MIN_TAG_CHARS <= len(t) <= MAX_TAG_CHARS):
        return None
    if t in STOP_TAGS:
        return None
    if len(t.split(" ")) > MAX_TAG_WORDS:
        return None
    return t


def finalize_tags(candidates: Iterable[str], max_final: int = MAX_FINAL_TAGS) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        normalized = normalize_tag(candidate)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        out.append(normalized)
        if len(out) >= max_final:
            break
    return out
