# backend/vaultflow/services/sanitize.py
"""
Convert arbitrary step payloads into JSON-safe trees before they are stored.

Rules:
- cycles are cut with a "[Circular]" marker (only references already on the
  current path count; shared, non-cyclic references are copied)
- callables, modules and classes are dropped (omitted from mappings, None in sequences)
- datetimes become ISO-8601 strings, exceptions become {name, message, stack?, ...}
- integers outside the IEEE-754 safe range become decimal strings
- mappings become plain dicts with string keys, sets and tuples become lists
- NUL characters are stripped from every string, keys included

`sanitize` never raises; on an unexpected failure it returns None.
"""
from __future__ import annotations

import dataclasses
import enum
import inspect
import logging
import math
import traceback
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CIRCULAR_MARKER = "[Circular]"
TRUNCATED_MARKER = "[Truncated]"
MAX_SAFE_INTEGER = 2**53 - 1
MAX_DEPTH = 32

_DROP = object()


def sanitize(value: Any) -> Any:
    try:
        result = _walk(value, set(), 0)
    except Exception:
        logger.exception("Failed to sanitize telemetry payload")
        return None
    return None if result is _DROP else result


def _clean_str(value: str) -> str:
    return value.replace("\x00", "") if "\x00" in value else value


def _key(k: Any) -> str:
    if isinstance(k, enum.Enum):
        k = k.value
    return _clean_str(k if isinstance(k, str) else str(k))


def _is_droppable(value: Any) -> bool:
    return (
        inspect.isclass(value)
        or inspect.ismodule(value)
        or inspect.isroutine(value)
        or callable(value)
    )


def _exception_tree(exc: BaseException, ancestors: set[int], depth: int) -> dict[str, Any]:
    out: dict[str, Any] = {"name": type(exc).__name__, "message": _clean_str(str(exc))}
    if exc.__traceback__ is not None:
        out["stack"] = _clean_str(
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        )
    for attr, attr_value in vars(exc).items():
        if attr.startswith("_") or attr in out:
            continue
        item = _walk(attr_value, ancestors, depth + 1)
        if item is not _DROP:
            out[_key(attr)] = item
    return out


def _walk(value: Any, ancestors: set[int], depth: int) -> Any:
    # scalars
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, enum.Enum):
        return _walk(value.value, ancestors, depth)
    if isinstance(value, int):
        return value if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER else str(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        return _clean_str(value)
    if isinstance(value, Decimal):
        return str(value) if value.is_finite() else None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _clean_str(bytes(value).decode("utf-8", errors="replace"))

    if depth >= MAX_DEPTH:
        return TRUNCATED_MARKER

    # everything below may reference itself
    marker = id(value)
    if marker in ancestors:
        return CIRCULAR_MARKER

    if isinstance(value, BaseException):
        ancestors.add(marker)
        try:
            return _exception_tree(value, ancestors, depth)
        finally:
            ancestors.discard(marker)

    if _is_droppable(value):
        return _DROP

    ancestors.add(marker)
    try:
        if isinstance(value, Mapping):
            out: dict[str, Any] = {}
            for k, v in value.items():
                item = _walk(v, ancestors, depth + 1)
                if item is not _DROP:
                    out[_key(k)] = item
            return out

        if isinstance(value, (list, tuple, set, frozenset)):
            items = value
            if isinstance(value, (set, frozenset)):
                items = sorted(value, key=repr)
            result = []
            for v in items:
                item = _walk(v, ancestors, depth + 1)
                result.append(None if item is _DROP else item)
            return result

        if isinstance(value, BaseModel):
            return _walk(dict(value), ancestors, depth + 1)

        if dataclasses.is_dataclass(value):
            return _walk(
                {f.name: getattr(value, f.name) for f in dataclasses.fields(value)},
                ancestors,
                depth + 1,
            )

        if hasattr(value, "__dict__"):
            public = {k: v for k, v in vars(value).items() if not k.startswith("_")}
            return _walk(public, ancestors, depth + 1)
    finally:
        ancestors.discard(marker)

    try:
        return _clean_str(str(value))
    except Exception:
        return _DROP
