"""
Line Output Parser
==================
Turns raw, interleaved stdout/stderr of a test run into canonical cases.

Pipeline:
    1. Split on \\r?\\n and strip ANSI color escapes
    2. Feed each line to the active cross-line state machines
    3. Lines no machine consumed: evaluate every candidate grammar,
       keep the longest match (ties keep registry order)
    4. Second pass: correlate Rust assertion-detail lines to panic cases
    5. Summary: generic "N Tests M Failures K Ignored" line, else the
       unittest "Ran N tests" trailer, else a framework-specific form,
       else the per-case tally

Contract:
    - Never raises. Empty or garbage input gives an empty, zeroed result.
    - Does not retry unrestricted when a restricted subset finds nothing;
      that is the caller's decision.
"""
import logging
import re
from typing import Iterable, Optional

from testnorm.core.config import DEBUG_PATTERN_MATCHING
from testnorm.models.test_case import (
    IndividualTestCase,
    TestCaseParseResult,
    TestStatus,
    TestSummary,
)
from testnorm.parser.merge import summarize_test_cases
from testnorm.parser.patterns import (
    PatternRegistry,
    TestCasePattern,
    default_registry,
    normalize_status,
)
from testnorm.parser.state_machines import (
    PANIC_LINE,
    CaseCollector,
    build_state_machines,
    is_separator,
    strip_method_suffix,
)

logger = logging.getLogger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


def split_output_lines(output: str) -> list[str]:
    return re.split(r"\r?\n", output) if output else []


# ---------------------------------------------------------------------------
# Per-line matching
# ---------------------------------------------------------------------------
def match_line(line: str, patterns: list[TestCasePattern]) -> Optional[tuple[TestCasePattern, re.Match]]:
    """Longest match across `patterns`; earlier entries win ties."""
    best: Optional[tuple[TestCasePattern, re.Match]] = None
    for pattern in patterns:
        match = pattern.pattern.search(line)
        if match is None:
            continue
        if best is None or len(match.group(0)) > len(best[1].group(0)):
            best = (pattern, match)
    return best


def _group(match: re.Match, index: int) -> Optional[str]:
    if index <= 0:
        return None
    value = match.group(index)
    return value if value else None


def build_case(pattern: TestCasePattern, match: re.Match, parent_target: str) -> Optional[IndividualTestCase]:
    """Map a grammar match to a case; None when the name group is empty."""
    groups = pattern.groups
    name = (_group(match, groups.name) or "").strip()
    if not name:
        return None

    raw_status = _group(match, groups.status)
    if raw_status:
        status = normalize_status(raw_status)
    elif pattern.fixed_status is not None:
        status = pattern.fixed_status
    else:
        status = TestStatus.FAIL

    line_text = _group(match, groups.line)
    try:
        line_no = int(line_text) if line_text else 0
    except ValueError:
        line_no = 0

    message = _group(match, groups.message)
    class_name = _group(match, groups.class_name)
    if class_name:
        class_name = strip_method_suffix(class_name.strip(), name)

    return IndividualTestCase(
        name=name,
        file=(_group(match, groups.file) or "").strip(),
        line=line_no,
        parent_target=parent_target,
        status=status,
        error_message=message.strip() if message else None,
        suite=_group(match, groups.suite),
        class_name=class_name,
        framework_id=pattern.id,
    )


# ---------------------------------------------------------------------------
# Second pass: Rust assertion details
# ---------------------------------------------------------------------------
_ASSERTION_DETAIL = re.compile(r"^\s*(assertion .*failed.*|left: .*)$")


def _correlate_panic_details(lines: list[str], cases: list[IndividualTestCase]) -> None:
    for index, line in enumerate(lines):
        panic = PANIC_LINE.match(line)
        if not panic:
            continue
        name = panic.group(1)
        case = next((c for c in reversed(cases) if c.name == name), None)
        if case is None or case.error_message:
            continue
        for follower in lines[index + 1:]:
            if is_separator(follower):
                break
            detail = _ASSERTION_DETAIL.match(follower)
            if detail:
                case.error_message = detail.group(1).strip()
                break


# ---------------------------------------------------------------------------
# Summary lines
# ---------------------------------------------------------------------------
_GENERIC_SUMMARY = re.compile(r"(\d+)\s+Tests?\s+(\d+)\s+Failures?\s+(\d+)\s+Ignored")

_UNITTEST_RAN = re.compile(r"^Ran (\d+) tests? in ", re.MULTILINE)
_UNITTEST_VERDICT = re.compile(r"^(OK|FAILED)(?:\s+\((.*)\))?\s*$", re.MULTILINE)
_UNITTEST_COUNT = re.compile(r"(failures|errors|skipped|expected failures|unexpected successes)=(\d+)")

_DOCTEST_SUMMARY = re.compile(
    r"\[doctest\] test cases:\s*(\d+)\s*\|\s*(\d+)\s+passed\s*\|\s*(\d+)\s+failed"
    r"(?:\s*\|\s*(\d+)\s+skipped)?"
)
_CATCH2_SUMMARY = re.compile(
    r"^test cases:\s*(\d+)\s*\|\s*(\d+)\s+passed\s*\|\s*(\d+)\s+failed(?:\s*\|\s*(\d+)\s+skipped)?",
    re.MULTILINE,
)
_CATCH2_ALL_PASSED = re.compile(r"^All tests passed \(\d+ assertions? in (\d+) test cases?\)", re.MULTILINE)
_RUST_SUMMARY = re.compile(
    r"^test result: \w+\. (\d+) passed; (\d+) failed; (\d+) ignored", re.MULTILINE
)
_PYTEST_SUMMARY = re.compile(
    r"^=+ (.*?\d+ (?:passed|failed|skipped|errors?|xfailed|xpassed).*?) in [\d.]+s.*=+\s*$",
    re.MULTILINE,
)
_PYTEST_COUNT = re.compile(r"(\d+) (passed|failed|skipped|errors?|xfailed|xpassed)")
_CTEST_SUMMARY = re.compile(r"\d+% tests passed, (\d+) tests? failed out of (\d+)")


def _summary(total: int, failed: int, ignored: int) -> TestSummary:
    return TestSummary(total=total, failed=failed, ignored=ignored, passed=total - failed - ignored)


def _generic_summary(text: str) -> Optional[TestSummary]:
    match = _GENERIC_SUMMARY.search(text)
    if not match:
        return None
    total, failed, ignored = (int(g) for g in match.groups())
    return _summary(total, failed, ignored)


def _unittest_summary(text: str) -> Optional[TestSummary]:
    ran = _UNITTEST_RAN.search(text)
    if not ran:
        return None
    counts: dict[str, int] = {}
    verdict = _UNITTEST_VERDICT.search(text, ran.end())
    if verdict and verdict.group(2):
        for key, value in _UNITTEST_COUNT.findall(verdict.group(2)):
            counts[key] = int(value)
    failed = counts.get("failures", 0) + counts.get("errors", 0) + counts.get("unexpected successes", 0)
    return _summary(int(ran.group(1)), failed, counts.get("skipped", 0))


def _framework_summary(text: str) -> Optional[TestSummary]:
    match = _DOCTEST_SUMMARY.search(text)
    if match:
        total, _, failed, skipped = match.groups()
        return _summary(int(total), int(failed), int(skipped or 0))

    match = _CATCH2_SUMMARY.search(text)
    if match:
        total, _, failed, skipped = match.groups()
        return _summary(int(total), int(failed), int(skipped or 0))

    match = _CATCH2_ALL_PASSED.search(text)
    if match:
        return _summary(int(match.group(1)), 0, 0)

    rust = _RUST_SUMMARY.findall(text)
    if rust:
        passed = sum(int(p) for p, _, _ in rust)
        failed = sum(int(f) for _, f, _ in rust)
        ignored = sum(int(i) for _, _, i in rust)
        return _summary(passed + failed + ignored, failed, ignored)

    match = _PYTEST_SUMMARY.search(text)
    if match:
        counts: dict[str, int] = {}
        for value, key in _PYTEST_COUNT.findall(match.group(1)):
            key = "errors" if key == "error" else key
            counts[key] = counts.get(key, 0) + int(value)
        failed = counts.get("failed", 0) + counts.get("errors", 0)
        ignored = counts.get("skipped", 0) + counts.get("xfailed", 0)
        total = failed + ignored + counts.get("passed", 0) + counts.get("xpassed", 0)
        return _summary(total, failed, ignored)

    match = _CTEST_SUMMARY.search(text)
    if match:
        return _summary(int(match.group(2)), int(match.group(1)), 0)

    return None


def find_summary(text: str, parent_target: str = "") -> Optional[TestSummary]:
    """Authoritative summary from the text, or None when no summary form is present."""
    generic = _generic_summary(text)
    unittest_summary = _unittest_summary(text)
    if generic is not None:
        if unittest_summary is not None:
            logger.warning(
                "Both a generic summary line and a unittest 'Ran N tests' trailer found for %s; "
                "using the generic one, please review this output",
                parent_target or "<unknown target>",
            )
        return generic
    if unittest_summary is not None:
        return unittest_summary
    return _framework_summary(text)


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------
def extract_test_cases_from_output(
    output: str,
    parent_target: str,
    allowed_pattern_ids: Optional[Iterable[str]] = None,
    registry: Optional[PatternRegistry] = None,
) -> TestCaseParseResult:
    """
    Parse raw test output into a TestCaseParseResult.

    Parameters
    ----------
    output : str
        Combined stdout/stderr in emission order.
    parent_target : str
        Owning target label, copied onto every case.
    allowed_pattern_ids : iterable of str, optional
        Restrict matching to these grammar ids. None or empty = all.
    registry : PatternRegistry, optional
        Grammar source; default_registry() when omitted.

    Returns
    -------
    TestCaseParseResult
    """
    if not output or not output.strip():
        return TestCaseParseResult.empty()

    registry = registry or default_registry()
    allowed = set(allowed_pattern_ids) if allowed_pattern_ids else None

    try:
        patterns = registry.select(allowed)
        machines = build_state_machines(allowed, releases=lambda line: match_line(line, patterns) is not None)
        collector = CaseCollector(parent_target)
        lines = [strip_ansi(line) for line in split_output_lines(output)]

        for line in lines:
            if any(machine.feed(line, collector) for machine in machines):
                continue

            best = match_line(line, patterns)
            if best is None:
                continue

            pattern, match = best
            case = build_case(pattern, match, parent_target)
            if case is None:
                continue
            collector.emit(case)

            if DEBUG_PATTERN_MATCHING:
                logger.debug("Matched test case '%s' using pattern: %s (%s)",
                             case.name, pattern.framework, pattern.id)

        for machine in machines:
            machine.finish(collector)

        cases = collector.cases
        _correlate_panic_details(lines, cases)

        summary = find_summary("\n".join(lines), parent_target) or summarize_test_cases(cases)
    except Exception as e:
        logger.warning("Output parsing failed for %s: %s", parent_target, e, exc_info=True)
        return TestCaseParseResult.empty()

    logger.info("Parsed %d individual test cases from %s", len(cases), parent_target)
    return TestCaseParseResult(test_cases=cases, summary=summary)
