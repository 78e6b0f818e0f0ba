"""
Structured XML Parser
=====================
Reads the JUnit-style test.xml Bazel writes for every test target.

The scan is regex based and tolerant: partial or malformed documents yield
whatever testcases can still be recognised, and a document without any
<testsuite>/<testcase> yields an empty result instead of an error.

Per <testcase>:
    - name / file / line / classname attributes (XML entities decoded)
    - <failure>/<error> → FAIL, or TIMEOUT when its type mentions timeout
    - <skipped>         → SKIP
    - otherwise PASS, unless a result/status attribute mentions timeout
    - message = message attribute + "\\n" + body (CDATA aware)
    - missing file/line recovered from the message text

<system-out> sections are parsed as raw output and merged in.
"""
import html
import logging
import os
import re
from typing import Iterable, Optional

from testnorm.core.constants import XML_FRAMEWORK_ID
from testnorm.models.test_case import IndividualTestCase, TestCaseParseResult, TestStatus
from testnorm.parser.framework_detector import FRAMEWORK_PATTERNS, detect_framework_from_output
from testnorm.parser.merge import merge_structured_with_fallback, summarize_test_cases
from testnorm.parser.output_parser import extract_test_cases_from_output
from testnorm.parser.patterns import PatternRegistry

logger = logging.getLogger(__name__)


_ATTRIBUTE = re.compile(r"""([A-Za-z_][\w:\-.]*)\s*=\s*("([^"]*)"|'([^']*)')""")
_TESTSUITE = re.compile(r"<testsuite\b([^>]*)>(.*?)</testsuite>", re.IGNORECASE | re.DOTALL)
_TESTCASE = re.compile(r"<testcase\b([^>]*?)\s*(?:/>|>(.*?)</testcase>)", re.IGNORECASE | re.DOTALL)
_SYSTEM_OUT = re.compile(r"<system-out>(.*?)</system-out>", re.IGNORECASE | re.DOTALL)
_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_LOCATION = re.compile(r"([^\s():\"']+\.\w+):(\d+)")
_GO_FAIL_NOISE = re.compile(r"--- FAIL: .*?\(\d+(?:\.\d+)?s\)[ \t]*")


# ---------------------------------------------------------------------------
# Small decoding helpers
# ---------------------------------------------------------------------------
def decode_xml_entities(value: Optional[str]) -> str:
    """Named and numeric (decimal / hex) entities."""
    if not value:
        return ""
    return html.unescape(value)


def decode_text(raw: str) -> str:
    """Element text: CDATA sections verbatim, everything else entity-decoded."""
    if not raw:
        return ""
    parts: list[str] = []
    cursor = 0
    for cdata in _CDATA.finditer(raw):
        parts.append(decode_xml_entities(raw[cursor:cdata.start()]))
        parts.append(cdata.group(1))
        cursor = cdata.end()
    parts.append(decode_xml_entities(raw[cursor:]))
    return "".join(parts).strip()


def parse_attributes(text: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for match in _ATTRIBUTE.finditer(text or ""):
        value = match.group(3) if match.group(3) is not None else match.group(4)
        attrs[match.group(1)] = value or ""
    return attrs


def _find_tag(body: str, tag: str) -> Optional[tuple[dict[str, str], str]]:
    """First <tag ...>text</tag> or <tag .../> in `body`, as (attributes, decoded text)."""
    pattern = re.compile(
        rf"<{tag}\b([^>]*?)\s*(?:/>|>(.*?)</{tag}\s*>)",
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(body)
    if not match:
        return None
    return parse_attributes(match.group(1) or ""), decode_text(match.group(2) or "")


def _build_message(attrs: dict[str, str], text: str) -> Optional[str]:
    attr_message = decode_xml_entities(attrs.get("message", "")).strip()
    body = text.strip()
    # a body that only repeats the message attribute is dropped, not doubled
    if body == attr_message:
        body = ""
    parts = [part for part in (attr_message, body) if part]
    return "\n".join(parts) if parts else None


def clean_failure_message(message: str) -> str:
    """Drop Go's `--- FAIL: name (0.00s)` noise."""
    return _GO_FAIL_NOISE.sub("", message).strip()


# ---------------------------------------------------------------------------
# Location Recovery
# ---------------------------------------------------------------------------
def extract_package_path(target: str) -> Optional[str]:
    """`//apps/cc/tests:unit` → `apps/cc/tests`."""
    match = re.match(r"^//(.+):", target or "")
    return match.group(1) if match else None


def is_likely_user_code(file: str) -> bool:
    lower = file.replace("\\", "/").lower()
    base = os.path.basename(lower)
    if "/org/junit" in f"/{lower}":
        return False
    if "site-packages" in lower or lower.endswith("unittest/case.py"):
        return False
    if base.startswith("assert.") or base.endswith("runner.java"):
        return False
    return True


def extract_location_from_message(message: str, package_path: Optional[str] = None) -> Optional[tuple[str, int]]:
    """
    Best `file:line` candidate in an error message.

    Preference: a path containing the target's package path, then a path
    that does not look like assertion-library or runner code, then the
    last candidate found.
    """
    candidates = [(m.group(1), int(m.group(2))) for m in _LOCATION.finditer(message or "")]
    if not candidates:
        return None

    if package_path:
        for file, line in candidates:
            if package_path in file:
                return file, line
    for file, line in candidates:
        if is_likely_user_code(file):
            return file, line
    return candidates[-1]


# ---------------------------------------------------------------------------
# Testcase extraction
# ---------------------------------------------------------------------------
def _classify(attrs: dict[str, str], body: str) -> tuple[TestStatus, Optional[str]]:
    for tag in ("failure", "error"):
        found = _find_tag(body, tag)
        if found is not None:
            tag_attrs, text = found
            status = TestStatus.TIMEOUT if "timeout" in tag_attrs.get("type", "").lower() else TestStatus.FAIL
            return status, _build_message(tag_attrs, text)

    skipped = _find_tag(body, "skipped")
    if skipped is not None:
        return TestStatus.SKIP, _build_message(*skipped)

    result = attrs.get("result", "").lower()
    raw_status = attrs.get("status", "").lower()
    if "timeout" in result or "timeout" in raw_status:
        return TestStatus.TIMEOUT, None
    return TestStatus.PASS, None


def _extract_cases(
    section: str,
    suite_name: Optional[str],
    parent_target: str,
    package_path: Optional[str],
) -> list[IndividualTestCase]:
    cases: list[IndividualTestCase] = []
    for match in _TESTCASE.finditer(section):
        attrs = parse_attributes(match.group(1) or "")
        name = decode_xml_entities(attrs.get("name", "")).strip()
        if not name:
            continue

        try:
            line = int(attrs.get("line", "0") or 0)
        except ValueError:
            line = 0

        status, message = _classify(attrs, match.group(2) or "")
        case = IndividualTestCase(
            name=name,
            file=decode_xml_entities(attrs.get("file", "")).strip(),
            line=line,
            parent_target=parent_target,
            status=status,
            suite=suite_name or None,
            class_name=decode_xml_entities(attrs.get("classname", "")).strip() or None,
            framework_id=XML_FRAMEWORK_ID,
        )

        if message:
            location = extract_location_from_message(message, package_path)
            if location:
                if not case.file:
                    case.file = location[0]
                if case.line <= 0:
                    case.line = location[1]
            case.error_message = clean_failure_message(message) or None

        cases.append(case)
    return cases


def collect_system_out(xml: str) -> str:
    sections = [decode_text(m.group(1)) for m in _SYSTEM_OUT.finditer(xml)]
    return "\n".join(section for section in sections if section).strip()


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------
def parse_structured_test_xml(
    xml: str,
    parent_target: str,
    allowed_pattern_ids: Optional[Iterable[str]] = None,
    registry: Optional[PatternRegistry] = None,
) -> TestCaseParseResult:
    """
    Parse a test.xml document into a TestCaseParseResult.

    Parameters
    ----------
    xml : str
        Document text; may be partial or malformed.
    parent_target : str
        Owning target label (its package path guides location recovery).
    allowed_pattern_ids : iterable of str, optional
        Grammar restriction for the <system-out> fallback pass. When
        omitted the fallback pass is narrowed by sniffing the output.
    registry : PatternRegistry, optional
        Grammar source for the fallback pass.
    """
    if not xml or not xml.strip():
        return TestCaseParseResult.empty()

    try:
        document = xml.replace("\r\n", "\n")
        package_path = extract_package_path(parent_target)

        structured: list[IndividualTestCase] = []
        matched_suite = False
        for suite in _TESTSUITE.finditer(document):
            matched_suite = True
            suite_name = decode_xml_entities(parse_attributes(suite.group(1)).get("name", "")).strip()
            structured.extend(_extract_cases(suite.group(2), suite_name, parent_target, package_path))
        if not matched_suite:
            structured = _extract_cases(document, None, parent_target, package_path)

        cases = structured
        system_out = collect_system_out(document)
        if system_out:
            allowed = list(allowed_pattern_ids) if allowed_pattern_ids else None
            if allowed is None:
                sniffed = detect_framework_from_output(system_out)
                allowed = FRAMEWORK_PATTERNS.get(sniffed) if sniffed else None
            fallback = extract_test_cases_from_output(system_out, parent_target, allowed, registry)
            cases = merge_structured_with_fallback(structured, fallback.test_cases)
    except Exception as e:
        logger.warning("Structured XML parsing failed for %s: %s", parent_target, e, exc_info=True)
        return TestCaseParseResult.empty()

    return TestCaseParseResult(test_cases=cases, summary=summarize_test_cases(cases))
