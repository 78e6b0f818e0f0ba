"""
Pattern Registry
================
Per-framework line grammars plus their re-run filter templates.

Each grammar is a single-line regex, a GroupMap telling which capture group
holds which semantic field, an optional fixed status (for grammars whose
status is implied by the line variant), an optional filter template and a
flag saying whether the framework can isolate one case for a re-run.

Registry Rules:
    - Built-in grammars are immutable and keyed by a stable id.
    - Lookup by id and by declared test-rule kind.
    - Runtime extension appends external grammars. Invalid definitions are
      dropped one by one with a warning; construction never fails.
    - The registry is an explicitly constructed object. Parsers take it as a
      parameter; default_registry() exists only for convenience.
"""
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Optional

import yaml

from testnorm.core.config import CUSTOM_TEST_PATTERNS_FILE
from testnorm.models.test_case import TestStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Group Map (field → capture-group index, 0 = not captured)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class GroupMap:
    name: int
    file: int = 0
    line: int = 0
    status: int = 0
    message: int = 0
    suite: int = 0
    class_name: int = 0

    FIELDS = ("name", "file", "line", "status", "message", "suite", "class_name")

    def validate(self, pattern: re.Pattern) -> None:
        """Raise ValueError if any field points past the pattern's groups."""
        if self.name <= 0:
            raise ValueError("groups.name must reference a capture group")
        for field_name in self.FIELDS:
            index = getattr(self, field_name)
            if not isinstance(index, int) or index < 0:
                raise ValueError(f"groups.{field_name} must be a non-negative integer")
            if index > pattern.groups:
                raise ValueError(
                    f"groups.{field_name}={index} exceeds the {pattern.groups} group(s) of the pattern"
                )

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "GroupMap":
        aliases = {"testName": "name", "test_name": "name", "class": "class_name", "className": "class_name"}
        values: dict[str, int] = {}
        for key, value in raw.items():
            field_name = aliases.get(key, key)
            if field_name not in cls.FIELDS:
                raise ValueError(f"unknown group field '{key}'")
            values[field_name] = int(value)
        if "name" not in values:
            raise ValueError("groups must map 'name'")
        return cls(**values)


@dataclass(frozen=True)
class TestCasePattern:
    __test__ = False

    id: str
    framework: str
    pattern: re.Pattern
    groups: GroupMap
    fixed_status: Optional[TestStatus] = None
    filter_template: Optional[str] = None
    supports_individual: bool = False
    description: str = ""
    example: str = ""


# ---------------------------------------------------------------------------
# Status Normalization
# ---------------------------------------------------------------------------
STATUS_MAPPING: dict[str, TestStatus] = {
    "PASS":               TestStatus.PASS,
    "PASSED":             TestStatus.PASS,
    "OK":                 TestStatus.PASS,
    "P":                  TestStatus.PASS,
    "XPASS":              TestStatus.PASS,
    "EXPECTED FAILURE":   TestStatus.PASS,
    "FAIL":               TestStatus.FAIL,
    "FAILED":             TestStatus.FAIL,
    "FAILURE":            TestStatus.FAIL,
    "ERROR":              TestStatus.FAIL,
    "F":                  TestStatus.FAIL,
    "E":                  TestStatus.FAIL,
    "EXCEPTION":          TestStatus.FAIL,
    "UNEXPECTED SUCCESS": TestStatus.FAIL,
    "TIMEOUT":            TestStatus.TIMEOUT,
    "TIMED OUT":          TestStatus.TIMEOUT,
    "SKIP":               TestStatus.SKIP,
    "SKIPPED":            TestStatus.SKIP,
    "IGNORED":            TestStatus.SKIP,
    "XFAIL":              TestStatus.SKIP,
    "NOT RUN":            TestStatus.SKIP,
    "DISABLED":           TestStatus.SKIP,
    "RUN":                TestStatus.SKIP,
}


def normalize_status(raw: Optional[str]) -> TestStatus:
    """
    Map a raw status token to PASS / FAIL / TIMEOUT / SKIP.

    Lookup is case-insensitive and ignores decoration such as CTest's
    leading '***'. Unrecognised tokens map to FAIL.
    """
    if not raw:
        return TestStatus.FAIL
    token = raw.strip().lstrip("*").strip().upper()
    return STATUS_MAPPING.get(token, TestStatus.FAIL)


# ---------------------------------------------------------------------------
# Built-in Grammars (registry order is the tie-break order)
# ---------------------------------------------------------------------------
def _p(id: str, framework: str, regex: str, groups: GroupMap, *,
       fixed_status: Optional[TestStatus] = None,
       filter_template: Optional[str] = None,
       supports_individual: bool = False,
       description: str = "",
       example: str = "") -> TestCasePattern:
    compiled = re.compile(regex)
    groups.validate(compiled)
    return TestCasePattern(
        id=id,
        framework=framework,
        pattern=compiled,
        groups=groups,
        fixed_status=fixed_status,
        filter_template=filter_template,
        supports_individual=supports_individual,
        description=description,
        example=example,
    )


BUILTIN_TEST_PATTERNS: list[TestCasePattern] = [
    _p("unity_c_standard", "Unity C Framework",
       r"^(.+?):(\d+):([^:]+):(PASS|FAIL|TIMEOUT|SKIP)(?::\s*(.+))?$",
       GroupMap(file=1, line=2, name=3, status=4, message=5),
       filter_template="${name}", supports_individual=True,
       description="Standard Unity C test framework output",
       example="app/matrix/tests/test_sm.c:40:test_sm_active_library_should_return_non_null:PASS"),
    _p("unity_c_with_message", "Unity C Framework (with error message)",
       r"^(.+?):(\d+):([^:]+):(PASS|FAIL|TIMEOUT|SKIP):\s*(.+)$",
       GroupMap(file=1, line=2, name=3, status=4, message=5),
       filter_template="${name}", supports_individual=True,
       description="Unity C test framework with detailed error messages",
       example="app/matrix/tests/test_sm.c:576:test_sm_determinant_5x5:FAIL: Expected -120120 Was -120120.008"),
    _p("gtest_cpp", "Google Test (C++)",
       r"^\[\s*(PASSED|FAILED|TIMEOUT|SKIPPED|OK)\s*\]\s+(.+?)\.(.+?)\s+\((\d+)\s+ms\)$",
       GroupMap(status=1, suite=2, name=3),
       filter_template="${suite}.${name}", supports_individual=True,
       description="Google Test C++ framework output",
       example="[  PASSED  ] MatrixTest.test_sm_create (5 ms)"),
    _p("unittest_python", "Python unittest",
       r"^(\w+)\s+\(([\w.]+)\)\s+\.\.\.\s+(ok|FAIL|ERROR|skipped|expected failure|unexpected success)(?:\s+(.+))?$",
       GroupMap(name=1, class_name=2, status=3, message=4),
       filter_template="${class}.${name}", supports_individual=True,
       description="Python unittest verbose output",
       example="test_add (test_math.MathTest) ... ok"),
    _p("go_test", "Go Test",
       r"^\s*(?:===|---) (RUN|PASS|FAIL|SKIP):?\s+(\S+?)(?:\s+\(\d+(?:\.\d+)?s\))?\s*$",
       GroupMap(status=1, name=2),
       filter_template="^${name}$", supports_individual=True,
       description="Go test verbose output",
       example="--- PASS: TestMatrixCreate (0.00s)"),
    _p("rust_test", "Rust Test",
       r"^test\s+(.+?)\s+\.\.\.\s+(ok|FAILED|ignored)(?:,?\s+(.+))?$",
       GroupMap(name=1, status=2, message=3),
       filter_template="${name}", supports_individual=True,
       description="Rust libtest output",
       example="test matrix::test_sm_create ... ok"),
    _p("pytest_python", "PyTest (Python)",
       r"^(.+?)::(.+?)\s+(PASSED|FAILED|SKIPPED|ERROR|XFAIL|XPASS)(?:\s+([^\[\s].*?))?(?:\s+\[\s*\d+%\])?\s*$",
       GroupMap(file=1, name=2, status=3, message=4),
       filter_template="${name}", supports_individual=True,
       description="Python PyTest verbose output",
       example="tests/test_matrix.py::test_sm_create PASSED"),
    _p("pytest_summary_line", "PyTest (short test summary)",
       r"^(PASSED|FAILED|ERROR|SKIPPED|XFAIL|XPASS)\s+(.+?)::(\S+)(?:\s+-\s+(.+))?$",
       GroupMap(status=1, file=2, name=3, message=4),
       filter_template="${name}", supports_individual=True,
       description="PyTest short test summary info (-rA)",
       example="FAILED tests/test_math.py::test_divide - assert 1 == 2"),
    _p("pytest_assertion_line", "PyTest (traceback location)",
       r"^(.+?\.py):(\d+):\s+in\s+(test\w*)$",
       GroupMap(file=1, line=2, name=3),
       fixed_status=TestStatus.FAIL,
       description="PyTest --tb=short location of a failing assertion",
       example="tests/test_math.py:12: in test_divide"),
    _p("junit_java", "JUnit (Java)",
       r"^(.+?)\((.+?)\):\s+(PASS|FAIL|ERROR|SKIP)(?:\s+(.+))?$",
       GroupMap(name=1, class_name=2, status=3, message=4),
       filter_template="${class}#${name}", supports_individual=True,
       description="JUnit Java framework output",
       example="testMatrixCreate(MatrixTest): PASS"),
    _p("parentheses_format", "Generic (Parentheses Format)",
       r"^(.+?)\((\d+)\):\s*([^:]+):\s*(PASS|FAIL|TIMEOUT|SKIP)(?:\s+(.+))?$",
       GroupMap(file=1, line=2, name=3, status=4, message=5),
       description="Generic test framework with file(line): format",
       example="matrix_test.c(45): test_create: PASS"),
    _p("check_framework", "Check (C)",
       r"^(.+?):(\d+):([PFE]):([^:]+):([^:]+):\d+:\s*(.*)$",
       GroupMap(file=1, line=2, status=3, suite=4, name=5, message=6),
       filter_template="${suite}",
       description="libcheck CK_VERBOSE output",
       example="tests/check_math.c:15:P:Core:test_add:0: Passed"),
    _p("catch2_cpp", "Catch2 (C++)",
       r"^(.+?):(\d+):\s+FAILED:\s+(.+)$",
       GroupMap(file=1, line=2, name=3),
       fixed_status=TestStatus.FAIL,
       filter_template="${name}", supports_individual=True,
       description="Catch2 failed assertion with test name",
       example="tests/test_math.cpp:42: FAILED: test_addition"),
    _p("catch2_passed", "Catch2 (C++)",
       r"^(.+?):(\d+):\s+PASSED:\s+(.+)$",
       GroupMap(file=1, line=2, name=3),
       fixed_status=TestStatus.PASS,
       filter_template="${name}", supports_individual=True,
       description="Catch2 passed test (-s)",
       example="tests/test_math.cpp:56: PASSED: test_subtraction"),
    _p("catch2_summary", "Catch2 (C++)",
       r"^test case '(.+)' ((?i:passed|failed))$",
       GroupMap(name=1, status=2),
       filter_template="${name}", supports_individual=True,
       description="Catch2 per test case verdict",
       example="test case 'vector operations' passed"),
    _p("doctest_cpp", "doctest (C++)",
       r"^(.+?)\((\d+)\):\s+(PASSED|FAILED):\s+TEST_CASE\(\s*(.+?)\s*\)$",
       GroupMap(file=1, line=2, status=3, name=4),
       filter_template="${name}", supports_individual=True,
       description="doctest TEST_CASE verdict",
       example="tests/math_test.cpp(15): PASSED: TEST_CASE( test_multiplication )"),
    _p("doctest_subcase", "doctest (C++)",
       r"^(.+?)\((\d+)\):\s+(PASSED|FAILED):\s+SUBCASE\(\s*(.+?)\s*\)$",
       GroupMap(file=1, line=2, status=3, name=4),
       description="doctest SUBCASE verdict",
       example="tests/math_test.cpp(20): FAILED: SUBCASE( negative numbers )"),
    _p("ctest_output", "CTest",
       r"^\s*\d+/\d+\s+Test\s+#\d+:\s+(\S+)\s+\.*\s*(?:\*{3})?(Passed|Failed|Timeout|Exception|Not Run|Skipped)\s+[\d.]+\s+sec",
       GroupMap(name=1, status=2),
       filter_template="^${name}$", supports_individual=True,
       description="CTest progress line",
       example="  1/10 Test  #1: test_matrix_multiply .....   Passed    0.05 sec"),
    _p("ctest_verbose", "CTest (verbose)",
       r"^test\s+\d+\s+Start\s+\d+:\s+(\S+)$",
       GroupMap(name=1),
       fixed_status=TestStatus.SKIP,
       description="CTest -V start marker",
       example="test 1      Start  5: test_matrix_multiply"),
]


# ---------------------------------------------------------------------------
# Rule Kind → Pattern Ids
# ---------------------------------------------------------------------------
_UNITY_IDS = ["unity_c_standard", "unity_c_with_message"]
_PYTHON_IDS = ["pytest_python", "pytest_summary_line", "pytest_assertion_line", "unittest_python"]

PATTERN_IDS_BY_RULE_KIND: dict[str, list[str]] = {
    "cc_test": _UNITY_IDS + [
        "gtest_cpp", "catch2_cpp", "catch2_passed", "catch2_summary",
        "doctest_cpp", "doctest_subcase", "parentheses_format",
        "check_framework", "ctest_output", "ctest_verbose",
    ],
    "unity_test": list(_UNITY_IDS),
    "py_test": list(_PYTHON_IDS),
    "go_test": ["go_test"],
    "rust_test": ["rust_test"],
    "java_test": ["junit_java"],
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class PatternRegistry:
    """
    Ordered, id-keyed set of line grammars.

    Usage:
        registry = PatternRegistry()
        registry.extend([{"id": "mine", "pattern": "^ok (\\w+)$", "groups": {"name": 1}}])
        registry.by_id("gtest_cpp")
        registry.ids_for_rule_kind("py_test")
    """

    def __init__(
        self,
        patterns: Iterable[TestCasePattern] = BUILTIN_TEST_PATTERNS,
        rule_kinds: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self._patterns: list[TestCasePattern] = []
        self._by_id: dict[str, TestCasePattern] = {}
        self._rule_kinds: dict[str, list[str]] = {
            kind: list(ids)
            for kind, ids in (rule_kinds if rule_kinds is not None else PATTERN_IDS_BY_RULE_KIND).items()
        }
        for pattern in patterns:
            if pattern.id in self._by_id:
                logger.warning("Duplicate test pattern id '%s' ignored", pattern.id)
                continue
            self._patterns.append(pattern)
            self._by_id[pattern.id] = pattern

    # --- lookup ---

    def all_patterns(self) -> list[TestCasePattern]:
        return list(self._patterns)

    def by_id(self, pattern_id: str) -> Optional[TestCasePattern]:
        return self._by_id.get(pattern_id)

    def ids_for_rule_kind(self, kind: Optional[str]) -> set[str]:
        if not kind:
            return set()
        return set(self._rule_kinds.get(kind, []))

    def select(self, ids: Optional[Iterable[str]] = None) -> list[TestCasePattern]:
        """Registry-ordered subset for `ids`; all patterns when ids is None or empty."""
        if not ids:
            return self.all_patterns()
        wanted = set(ids)
        return [p for p in self._patterns if p.id in wanted]

    def __contains__(self, pattern_id: str) -> bool:
        return pattern_id in self._by_id

    def __len__(self) -> int:
        return len(self._patterns)

    # --- extension ---

    def extend(self, definitions: Iterable[dict[str, Any]]) -> int:
        """
        Append externally supplied grammars.

        Parameters
        ----------
        definitions : iterable of dict
            Each needs `id`, `pattern` (regex string) and `groups`
            (field → group index). Optional: `framework`, `fixed_status`,
            `filter_template`, `supports_individual`, `description`,
            `example`, `rule_kinds`.

        Returns
        -------
        int
            Number of grammars actually added. Invalid definitions are
            skipped with a warning.
        """
        added = 0
        for definition in definitions or []:
            try:
                pattern = self._build_custom(definition)
            except (ValueError, TypeError, re.error) as e:
                ident = definition.get("id") if isinstance(definition, dict) else definition
                logger.warning("Invalid custom test pattern %r dropped: %s", ident, e)
                continue

            if pattern.id in self._by_id:
                logger.warning("Custom test pattern '%s' duplicates an existing id; dropped", pattern.id)
                continue

            self._patterns.append(pattern)
            self._by_id[pattern.id] = pattern
            kinds = definition.get("rule_kinds") or []
            if isinstance(kinds, str):
                kinds = [kinds]
            for kind in kinds:
                self._rule_kinds.setdefault(str(kind), []).append(pattern.id)
            added += 1

        return added

    def load_custom_patterns(self, path: str) -> int:
        """Extend from a YAML file (a list, or a mapping with a `patterns` list)."""
        if not path or not os.path.isfile(path):
            logger.warning("Custom test pattern file not found: %s", path)
            return 0
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read custom test patterns from %s: %s", path, e)
            return 0

        if isinstance(data, dict):
            data = data.get("patterns")
        if not isinstance(data, list):
            logger.warning("Custom test pattern file %s holds no pattern list", path)
            return 0

        added = self.extend(data)
        logger.info("Loaded %d custom test pattern(s) from %s", added, path)
        return added

    @staticmethod
    def _build_custom(definition: dict[str, Any]) -> TestCasePattern:
        if not isinstance(definition, dict):
            raise ValueError("definition must be a mapping")

        pattern_id = str(definition.get("id") or "").strip()
        if not pattern_id:
            raise ValueError("missing id")

        raw_pattern = definition.get("pattern")
        if not raw_pattern or not isinstance(raw_pattern, str):
            raise ValueError("missing pattern")
        compiled = re.compile(raw_pattern)

        raw_groups = definition.get("groups")
        if not isinstance(raw_groups, dict) or not raw_groups:
            raise ValueError("missing groups")
        groups = GroupMap.from_mapping(raw_groups)
        groups.validate(compiled)

        fixed = definition.get("fixed_status")
        return TestCasePattern(
            id=pattern_id,
            framework=str(definition.get("framework") or "Custom"),
            pattern=compiled,
            groups=groups,
            fixed_status=normalize_status(fixed) if fixed else None,
            filter_template=definition.get("filter_template") or None,
            supports_individual=bool(definition.get("supports_individual", False)),
            description=str(definition.get("description") or "Custom pattern from settings"),
            example=str(definition.get("example") or ""),
        )


@lru_cache(maxsize=1)
def default_registry() -> PatternRegistry:
    """Built-in grammars plus CUSTOM_TEST_PATTERNS_FILE, built once per process."""
    registry = PatternRegistry()
    if CUSTOM_TEST_PATTERNS_FILE:
        registry.load_custom_patterns(CUSTOM_TEST_PATTERNS_FILE)
    return registry
