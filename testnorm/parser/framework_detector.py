"""
Framework Detector
==================
Narrows the grammar set for a target from its declared rule kind and
dependency labels.

Order of evidence:
    1. Exact rule-kind matches (rust / go / junit / unity / python kinds)
    2. For cc_test and unrecognised kinds, dependency-label keywords
       (e.g. a dep mentioning "googletest" implies the gtest grammars)

An empty detection means "use the full registry, unscoped". Never raises.
"""
import logging
import re
from typing import Iterable, Optional

from testnorm.models.target import TestTargetMetadata
from testnorm.parser.patterns import PatternRegistry, default_registry

logger = logging.getLogger(__name__)


FRAMEWORK_PATTERNS: dict[str, list[str]] = {
    "rust":     ["rust_test"],
    "pytest":   ["pytest_python", "pytest_summary_line", "pytest_assertion_line"],
    "unittest": ["unittest_python"],
    "unity":    ["unity_c_standard", "unity_c_with_message"],
    "doctest":  ["doctest_cpp", "doctest_subcase"],
    "catch2":   ["catch2_cpp", "catch2_passed", "catch2_summary"],
    "gtest":    ["gtest_cpp"],
    "check":    ["parentheses_format", "check_framework"],
    "ctest":    ["ctest_output", "ctest_verbose"],
    "go":       ["go_test"],
    "junit":    ["junit_java"],
}

# dependency keyword(s) → framework, checked in this order
_DEP_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("gtest", "googletest"), "gtest"),
    (("catch2",), "catch2"),
    (("doctest",), "doctest"),
    (("unity",), "unity"),
    (("libcheck", "check"), "check"),
    (("ctest", "cmake"), "ctest"),
    (("pytest",), "pytest"),
]

_DEP_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

_KNOWN_KINDS = ("rust", "go_test", "java_test", "junit", "unity_test", "py_test")


def detect_frameworks(metadata: Optional[TestTargetMetadata]) -> list[str]:
    """Ordered, de-duplicated framework ids, most specific first."""
    if metadata is None:
        return []

    frameworks: list[str] = []

    def add(framework: str) -> None:
        if framework not in frameworks:
            frameworks.append(framework)

    kind = (metadata.rule_kind or "").lower()
    # keywords match dependency-label tokens by prefix ("doctest" is not "ctest")
    tokens = {
        token
        for dep in metadata.deps or []
        for token in _DEP_TOKEN_SPLIT.split(dep.lower())
        if token
    }

    def has_dep(*keywords: str) -> bool:
        return any(token.startswith(keyword) for token in tokens for keyword in keywords)

    if "rust" in kind:
        add("rust")
    if "go_test" in kind:
        add("go")
    if "java_test" in kind or "junit" in kind:
        add("junit")
    if "unity_test" in kind:
        add("unity")
    if "py_test" in kind:
        add("pytest")
        if not has_dep("pytest"):
            add("unittest")

    if "cc_test" in kind or not any(known in kind for known in _KNOWN_KINDS):
        for keywords, framework in _DEP_KEYWORDS:
            if has_dep(*keywords):
                add(framework)

    return frameworks


def detect_primary_framework(metadata: Optional[TestTargetMetadata]) -> Optional[str]:
    detected = detect_frameworks(metadata)
    return detected[0] if detected else None


def pattern_ids_for_frameworks(frameworks: Iterable[str]) -> list[str]:
    ids: list[str] = []
    for framework in frameworks:
        for pattern_id in FRAMEWORK_PATTERNS.get(framework, []):
            if pattern_id not in ids:
                ids.append(pattern_id)
    return ids


def resolve_allowed_patterns(
    metadata: Optional[TestTargetMetadata],
    test_type: Optional[str] = None,
    registry: Optional[PatternRegistry] = None,
) -> Optional[list[str]]:
    """
    Pattern ids to restrict parsing to, or None for the full registry.

    Detected frameworks win; otherwise the rule-kind table is consulted
    for `test_type` and then for the metadata's own rule kind.
    """
    registry = registry or default_registry()

    ids = pattern_ids_for_frameworks(detect_frameworks(metadata))
    if not ids:
        ids = sorted(registry.ids_for_rule_kind(test_type))
    if not ids and metadata is not None:
        ids = sorted(registry.ids_for_rule_kind(metadata.rule_kind))

    ids = [pattern_id for pattern_id in ids if pattern_id in registry]
    return ids or None


# ---------------------------------------------------------------------------
# Output sniffing (used for the XML <system-out> fallback)
# ---------------------------------------------------------------------------
_PYTEST_BANNER = re.compile(r"pytest-[\d.]+|^platform \S+ -- Python", re.IGNORECASE | re.MULTILINE)
_UNITTEST_TRAILER = re.compile(r"^Ran \d+ tests? in ", re.MULTILINE)


def detect_framework_from_output(text: str) -> Optional[str]:
    if not text:
        return None
    if _PYTEST_BANNER.search(text):
        return "pytest"
    if _UNITTEST_TRAILER.search(text):
        return "unittest"
    return None
