"""
Tests for sanitize.py - telemetry payload sanitization.

Covers cycle cutting, dropping of non-data values, scalar coercions and the
never-raises guarantee.
"""
import enum
import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from vaultflow.services.sanitize import CIRCULAR_MARKER, MAX_DEPTH, TRUNCATED_MARKER, sanitize


class Color(enum.Enum):
    RED = "red"


@dataclass
class Point:
    x: int
    y: int


class Payload(BaseModel):
    name: str
    when: datetime


class TestCycles:
    """Self references are cut; shared references are not."""

    def test_self_referencing_dict(self):
        d = {"a": 1}
        d["self"] = d
        out = sanitize(d)
        assert out == {"a": 1, "self": CIRCULAR_MARKER}

    def test_cycle_through_list(self):
        items = [1]
        holder = {"items": items}
        items.append(holder)
        out = sanitize(holder)
        assert out == {"items": [1, CIRCULAR_MARKER]}

    def test_shared_reference_is_not_circular(self):
        shared = {"k": "v"}
        out = sanitize({"a": shared, "b": shared})
        assert out == {"a": {"k": "v"}, "b": {"k": "v"}}

    def test_deep_nesting_is_truncated(self):
        value = "leaf"
        for _ in range(MAX_DEPTH + 5):
            value = [value]
        out = sanitize(value)
        json.dumps(out)
        depth = 0
        while isinstance(out, list):
            out = out[0]
            depth += 1
        assert out == TRUNCATED_MARKER
        assert depth == MAX_DEPTH


class TestDroppedValues:
    """Functions, classes and modules never reach storage."""

    def test_callables_omitted_from_mappings(self):
        out = sanitize({"fn": lambda: 1, "cls": Point, "mod": json, "keep": 1})
        assert out == {"keep": 1}

    def test_callables_become_none_in_lists(self):
        assert sanitize([1, print, "x"]) == [1, None, "x"]

    def test_top_level_callable_is_none(self):
        assert sanitize(len) is None


class TestScalars:
    def test_datetime_to_iso(self):
        when = datetime(2025, 1, 2, 3, 4, 5)
        assert sanitize({"t": when}) == {"t": "2025-01-02T03:04:05"}

    def test_big_integers_become_strings(self):
        big = 2**60
        assert sanitize({"n": big, "small": 42}) == {"n": str(big), "small": 42}

    def test_non_finite_floats_become_none(self):
        assert sanitize([float("nan"), float("inf"), 1.5]) == [None, None, 1.5]

    def test_nul_stripped_from_strings_and_keys(self):
        assert sanitize({"a\x00b": "c\x00d"}) == {"ab": "cd"}

    def test_misc_types(self):
        uid = UUID("12345678-1234-5678-1234-567812345678")
        out = sanitize({"u": uid, "d": Decimal("1.25"), "e": Color.RED, "b": b"hi", "s": {2, 1}})
        assert out == {"u": str(uid), "d": "1.25", "e": "red", "b": "hi", "s": [1, 2]}

    def test_tuple_becomes_list(self):
        assert sanitize((1, "a")) == [1, "a"]


class TestStructuredObjects:
    def test_exception_tree(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            out = sanitize({"error": e})
        err = out["error"]
        assert err["name"] == "ValueError"
        assert err["message"] == "boom"
        assert "ValueError: boom" in err["stack"]

    def test_exception_without_traceback_has_no_stack(self):
        out = sanitize(RuntimeError("nope"))
        assert out == {"name": "RuntimeError", "message": "nope"}

    def test_pydantic_and_dataclass(self):
        out = sanitize({"p": Payload(name="n", when=datetime(2025, 1, 1)), "pt": Point(1, 2)})
        assert out == {"p": {"name": "n", "when": "2025-01-01T00:00:00"}, "pt": {"x": 1, "y": 2}}

    def test_plain_object_public_attributes(self):
        class Thing:
            def __init__(self):
                self.visible = 1
                self._hidden = 2

        assert sanitize(Thing()) == {"visible": 1}

    def test_output_is_json_serialisable(self):
        d = {"when": datetime(2025, 1, 1), "err": KeyError("k"), "nums": {3, 4}}
        d["loop"] = d
        json.dumps(sanitize(d))


class TestNeverRaises:
    def test_broken_str_returns_none(self):
        class Opaque:
            __slots__ = ()

            def __str__(self):
                raise RuntimeError("cannot render")

        assert sanitize(Opaque()) is None

    def test_broken_mapping_returns_none(self):
        class BadMapping(dict):
            def items(self):
                raise RuntimeError("broken")

        assert sanitize(BadMapping(a=1)) is None
