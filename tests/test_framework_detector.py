"""
Unit Tests — Framework Detector
===============================
Rule-kind and dependency-keyword detection, and the grammar restriction
derived from it.
"""
import pytest

from testnorm.models.target import TestTargetMetadata
from testnorm.parser.framework_detector import (
    FRAMEWORK_PATTERNS,
    detect_framework_from_output,
    detect_frameworks,
    detect_primary_framework,
    pattern_ids_for_frameworks,
    resolve_allowed_patterns,
)
from testnorm.parser.patterns import PatternRegistry


def _meta(rule_kind, deps=()):
    return TestTargetMetadata(target="//pkg:t", rule_kind=rule_kind, deps=list(deps))


class TestDetectFrameworks:

    @pytest.mark.parametrize("rule_kind,deps,expected", [
        ("rust_test", [], ["rust"]),
        ("go_test", [], ["go"]),
        ("java_test", [], ["junit"]),
        ("unity_test", [], ["unity"]),
        ("py_test", [], ["pytest", "unittest"]),
        ("py_test", ["@pypi//pytest"], ["pytest"]),
        ("cc_test", ["@googletest//:gtest_main"], ["gtest"]),
        ("cc_test", ["@catch2//:catch2_main", "@doctest//doctest"], ["catch2", "doctest"]),
        ("cc_test", ["@unity//:unity"], ["unity"]),
        ("cc_test", [], []),
        ("sh_test", ["//tools:cmake_helper"], ["ctest"]),
    ])
    def test_detection(self, rule_kind, deps, expected):
        assert detect_frameworks(_meta(rule_kind, deps)) == expected

    def test_go_kind_ignores_cc_dependencies(self):
        assert detect_frameworks(_meta("go_test", ["@googletest//:gtest"])) == ["go"]

    def test_no_metadata(self):
        assert detect_frameworks(None) == []
        assert detect_primary_framework(None) is None

    def test_primary_is_most_specific(self):
        assert detect_primary_framework(_meta("py_test")) == "pytest"


class TestPatternIds:

    def test_ids_are_flattened_without_duplicates(self):
        assert pattern_ids_for_frameworks(["gtest", "gtest", "go"]) == ["gtest_cpp", "go_test"]

    def test_unknown_framework(self):
        assert pattern_ids_for_frameworks(["nope"]) == []

    def test_every_framework_id_exists_in_registry(self):
        registry = PatternRegistry()
        for ids in FRAMEWORK_PATTERNS.values():
            for pattern_id in ids:
                assert pattern_id in registry


class TestResolveAllowedPatterns:

    def test_detected_framework_wins(self):
        assert resolve_allowed_patterns(_meta("cc_test", ["@googletest//:gtest"])) == ["gtest_cpp"]

    def test_rule_kind_table_for_undetected_cc_test(self):
        allowed = resolve_allowed_patterns(_meta("cc_test"))
        assert "gtest_cpp" in allowed
        assert "ctest_output" in allowed
        assert "pytest_python" not in allowed

    def test_test_type_without_metadata(self):
        assert resolve_allowed_patterns(None, "go_test") == ["go_test"]

    def test_unknown_everything_means_unrestricted(self):
        assert resolve_allowed_patterns(_meta("sh_test")) is None
        assert resolve_allowed_patterns(None) is None

    def test_ids_missing_from_registry_are_dropped(self):
        registry = PatternRegistry(patterns=[], rule_kinds={})
        assert resolve_allowed_patterns(_meta("go_test"), registry=registry) is None


class TestDetectFromOutput:

    def test_pytest_banner(self):
        assert detect_framework_from_output("platform linux -- Python 3.11.4, pytest-7.4.0") == "pytest"

    def test_unittest_trailer(self):
        assert detect_framework_from_output("....\nRan 4 tests in 0.01s\n\nOK") == "unittest"

    def test_unknown(self):
        assert detect_framework_from_output("[ RUN      ] Math.Add") is None
        assert detect_framework_from_output("") is None
