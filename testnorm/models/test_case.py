"""
Test Case Model
===============
Pydantic models for the canonical, framework-independent test result.
This is the contract between the parsers and every downstream consumer
(UI rendering, the re-run filter builder, the discovery cache).

Fields (IndividualTestCase):
    name            — test name as the framework reports it (required)
    file            — source file, "" when unknown
    line            — 1-based line, 0 when unknown
    parent_target   — owning target label (e.g. //app:tests)
    status          — PASS / FAIL / TIMEOUT / SKIP
    error_message   — failure text, None when absent
    suite           — suite / fixture name (gtest suite, testsuite element)
    class_name      — class or module scope (JUnit class, unittest TestCase)
    framework_id    — id of the grammar that produced the case
    group_key       — suite-scoped de-duplication key
"""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TestStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    TIMEOUT = "TIMEOUT"
    SKIP = "SKIP"

    # keep pytest from collecting the enum
    __test__ = False


class IndividualTestCase(BaseModel):
    __test__ = False

    name: str
    file: str = ""
    line: int = 0
    parent_target: str = ""
    status: TestStatus = TestStatus.FAIL
    error_message: Optional[str] = None
    suite: Optional[str] = None
    class_name: Optional[str] = None
    framework_id: Optional[str] = None
    group_key: Optional[str] = None

    def has_location(self) -> bool:
        return bool(self.file and self.file.strip() and self.line and self.line > 0)

    def scope_key(self) -> str:
        """lower(suite or class)::lower(name), shared by de-dup and merge."""
        scope = (self.suite or self.class_name or "").lower()
        return f"{scope}::{self.name.lower()}"


class TestSummary(BaseModel):
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    ignored: int = 0


class TestCaseParseResult(BaseModel):
    __test__ = False

    test_cases: List[IndividualTestCase] = []
    summary: TestSummary = Field(default_factory=TestSummary)

    @classmethod
    def empty(cls) -> "TestCaseParseResult":
        return cls(test_cases=[], summary=TestSummary())


class UnifiedTestResult(TestCaseParseResult):
    source: Literal["xml", "none", "output"] = "none"
