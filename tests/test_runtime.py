"""Tests for runtime helpers, string handling and the variable store."""

import math
from enum import Enum

import numpy as np
import pytest
from packaging.version import Version

from defpatch import FormulaEvaluationError, Scope, SharedVariables, UnresolvedSymbol
from defpatch import runtime
from defpatch.strings import format_number, unescape


class Size(Enum):
    Small = 1
    Large = 2


class TestStrings:
    def test_unescape(self):
        assert unescape(r"a\nb") == "a\nb"
        assert unescape(r"\u00e9") == "\u00e9"
        assert unescape(r"\U0001F600") == "\U0001F600"
        assert unescape(r"\q") == "q"

    def test_unescape_out_of_range(self):
        with pytest.raises(ValueError):
            unescape(r"\UFFFFFFFF")

    def test_format_number(self):
        assert format_number(14.0) == "14"
        assert format_number(-0.25) == "-0.25"
        assert format_number(1e20) == "1e+20"
        assert format_number(math.nan) == "NaN"
        assert format_number(-math.inf) == "-Infinity"


class TestCoercions:
    def test_to_number(self):
        assert runtime.to_number(None) == 0
        assert runtime.to_number(True) == 1
        assert runtime.to_number(" 2.5 ") == 2.5
        assert runtime.to_number(np.int16(7)) == 7
        assert runtime.to_number(Size.Large) == 2

    def test_to_number_rejects_objects(self):
        with pytest.raises(FormulaEvaluationError, match="object"):
            runtime.to_number(object())

    def test_to_text(self):
        assert runtime.to_text(None) == ""
        assert runtime.to_text(False) == "false"
        assert runtime.to_text(np.float32(1.5)) == "1.5"
        assert runtime.to_text(Size.Small) == "Small"

    def test_to_bool(self):
        assert runtime.to_bool(0.0) is False
        assert runtime.to_bool(" True ") is True
        with pytest.raises(FormulaEvaluationError):
            runtime.to_bool("yes")

    def test_to_version(self):
        assert runtime.to_version("1.2.3") == Version("1.2.3")
        assert runtime.to_version(2.0) == Version("2")

    def test_equals(self):
        assert runtime.equals(None, None)
        assert not runtime.equals(None, 0)
        assert runtime.equals(Size.Large, "Large")
        assert runtime.equals(np.int32(3), 3.0)
        assert runtime.equals(True, 1.0)


class TestRegex:
    def test_patterns_are_cached(self):
        assert runtime.regex("a+b") is runtime.regex("a+b")

    def test_escaped_dollar(self):
        assert runtime.replace("cost", "^", "$$") == "$cost"

    def test_named_group(self):
        assert runtime.replace("ab", "(?P<x>a)", "${x}${x}") == "aab"

    def test_backslash_is_literal(self):
        assert runtime.replace("a", "a", "\\") == "\\"

    def test_bad_group_reference(self):
        with pytest.raises(FormulaEvaluationError, match="invalid replacement"):
            runtime.replace("a", "a", "$3")


class TestVersionRanges:
    @pytest.mark.parametrize(
        "version,spec,expected",
        [
            ("1.0", "[1.0,2.0)", True),
            ("1.0", "(1.0,2.0)", False),
            ("2.0", "[1.0,2.0]", True),
            ("3.0", "[1.0,)", True),
            ("0.5", "(,1.0]", True),
            ("1.0", "[1.0]", True),
            ("1.1", "[1.0]", False),
            ("1.5", "1.0", True),
            ("0.9", "1.0", False),
            ("1.5", ">=1.0,<2", True),
            ("1.5", "garbage!", False),
        ],
    )
    def test_version_in_range(self, version, spec, expected):
        assert runtime.version_in_range(Version(version), spec) is expected


class TestSharedVariables:
    def test_get_or_add_runs_factory_once(self):
        store = SharedVariables()
        calls = []

        def factory():
            calls.append(1)
            return 5.0

        assert store.get_or_add("x", factory) == 5.0
        assert store.get_or_add("x", factory) == 5.0
        assert len(calls) == 1

    def test_add_or_update(self):
        store = SharedVariables()
        for _ in range(3):
            store.add_or_update("n", lambda: 1.0, lambda old: old + 1)
        assert store["n"] == 3.0

    def test_try_remove(self):
        store = SharedVariables({"x": 1})
        assert store.try_remove("x") is True
        assert store.try_remove("x") is False
        assert "x" not in store

    def test_factory_may_read_store(self):
        store = SharedVariables({"base": 2.0})
        store.get_or_add("double", lambda: store["base"] * 2)
        assert store["double"] == 4.0


class TestScope:
    def test_resolution_order(self):
        store = SharedVariables({"x": 1.0, "y": 10.0, "z": 100.0})
        scope = Scope(store=store, globals_={"x": 2.0, "y": 20.0})
        assert scope.evaluate("x + y + z", {"x": 3.0}) == 123

    def test_store_is_read(self):
        store = SharedVariables()
        scope = Scope(store=store, globals_={})
        store.set("count", 4.0)
        assert scope.evaluate("count * 2") == 8

    def test_unknown_name(self):
        scope = Scope(store=SharedVariables(), globals_={})
        with pytest.raises(UnresolvedSymbol):
            scope.compile("nothing")
