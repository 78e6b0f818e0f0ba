"""
Structured + Fallback Merge
===========================
Combines cases read from a structured test.xml with cases recovered from
raw output (the XML's <system-out>, or the run's console output).

Rules:
    - Empty fallback                      → structured, unchanged
    - No structured case has a location   → fallback wholesale
    - Every structured case has location  → structured, unchanged
    - Otherwise backfill location-less structured cases by
      lower(suite or class)::lower(name) and append unmatched fallback cases
"""
from typing import Iterable

from testnorm.core.constants import XML_FRAMEWORK_ID
from testnorm.models.test_case import IndividualTestCase, TestStatus, TestSummary


def merge_structured_with_fallback(
    structured: list[IndividualTestCase],
    fallback: list[IndividualTestCase],
) -> list[IndividualTestCase]:
    if not fallback:
        return structured

    if not structured or not any(case.has_location() for case in structured):
        return [
            case if case.framework_id else case.model_copy(update={"framework_id": XML_FRAMEWORK_ID})
            for case in fallback
        ]

    if all(case.has_location() for case in structured):
        return structured

    fallback_by_key: dict[str, IndividualTestCase] = {}
    for case in fallback:
        fallback_by_key.setdefault(case.scope_key(), case)

    merged: list[IndividualTestCase] = []
    for case in structured:
        match = None if case.has_location() else fallback_by_key.get(case.scope_key())
        if match is None:
            merged.append(case)
            continue
        merged.append(case.model_copy(update={
            "file": case.file or match.file,
            "line": case.line if case.line > 0 else match.line,
            "error_message": case.error_message or match.error_message,
            "suite": case.suite or match.suite,
            "class_name": case.class_name or match.class_name,
            "framework_id": case.framework_id or match.framework_id,
        }))

    present = {case.scope_key() for case in merged}
    for case in fallback:
        key = case.scope_key()
        if key not in present:
            merged.append(case)
            present.add(key)

    return merged


def summarize_test_cases(cases: Iterable[IndividualTestCase]) -> TestSummary:
    """Per-case tally: PASS → passed, FAIL/TIMEOUT → failed, SKIP → ignored."""
    summary = TestSummary()
    for case in cases:
        summary.total += 1
        if case.status == TestStatus.PASS:
            summary.passed += 1
        elif case.status in (TestStatus.FAIL, TestStatus.TIMEOUT):
            summary.failed += 1
        else:
            summary.ignored += 1
    return summary
