"""
Cross-line State Machines
=========================
Grammars that need more than one line of context. Each tracker is a small
finite-state object with `feed(line, collector) -> bool` (True when the line
was consumed) and `finish(collector)` (flush at end of input). The outer
scanner feeds every line to the active trackers before generic per-line
matching, so a consumed line is never re-interpreted by a line grammar.

Trackers:
    PanicTracker            — Rust `thread 'x' panicked at file:line:col`
    UnittestFailureTracker  — Python unittest `FAIL: name (suite)` blocks
    DoctestContextTracker   — doctest `TEST CASE: name` context labels
"""
import logging
import re
from typing import Callable, Optional

from testnorm.models.test_case import IndividualTestCase, TestStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Case Collector (shared sink with de-duplication)
# ---------------------------------------------------------------------------
class CaseCollector:
    """
    Ordered sink for emitted cases.

    Cases sharing a group_key are merged into the first occurrence:
    empty fields are backfilled and a later status replaces an earlier
    one, except that FAIL and TIMEOUT are never downgraded. Two cases that
    both name a source file and disagree on it are separate occurrences
    (e.g. `test_init` in two Unity files) and are kept apart.
    """

    _STICKY = (TestStatus.FAIL, TestStatus.TIMEOUT)

    def __init__(self, parent_target: str = ""):
        self.parent_target = parent_target
        self._cases: list[IndividualTestCase] = []
        self._by_key: dict[str, list[IndividualTestCase]] = {}

    @property
    def cases(self) -> list[IndividualTestCase]:
        return list(self._cases)

    def __len__(self) -> int:
        return len(self._cases)

    def emit(self, case: IndividualTestCase) -> IndividualTestCase:
        """Add a case (or fold it into an earlier one); returns the stored case."""
        if not case.parent_target:
            case.parent_target = self.parent_target
        if not case.group_key:
            case.group_key = case.scope_key()

        existing = self._same_occurrence(case)
        if existing is None:
            self._cases.append(case)
            self._by_key.setdefault(case.group_key, []).append(case)
            return case

        if not existing.file and case.file:
            existing.file = case.file
        if existing.line <= 0 and case.line > 0:
            existing.line = case.line
        if not existing.error_message and case.error_message:
            existing.error_message = case.error_message
        if not existing.suite and case.suite:
            existing.suite = case.suite
        if not existing.class_name and case.class_name:
            existing.class_name = case.class_name
        if not existing.framework_id and case.framework_id:
            existing.framework_id = case.framework_id
        if existing.status not in self._STICKY:
            existing.status = case.status
        return existing

    def _same_occurrence(self, case: IndividualTestCase) -> Optional[IndividualTestCase]:
        for existing in self._by_key.get(case.group_key, ()):
            if not existing.file or not case.file or existing.file == case.file:
                return existing
        return None

    def last_named(self, name: str) -> Optional[IndividualTestCase]:
        """Most recently emitted case whose name equals `name`."""
        for case in reversed(self._cases):
            if case.name == name:
                return case
        return None


# ---------------------------------------------------------------------------
# Shared line helpers
# ---------------------------------------------------------------------------
PANIC_LINE = re.compile(
    r"^thread '(.+?)' panicked at (?:'(.*)', )?([^\s:]+):(\d+):\d+:?\s*$"
)

_SEPARATOR = re.compile(r"^\s*$|^---- |^note:|^failures:")


def is_separator(line: str) -> bool:
    """Blank line, Rust `---- name stdout ----` header, `note:` or `failures:`."""
    return bool(_SEPARATOR.match(line))


# ---------------------------------------------------------------------------
# (a) Rust panic correlation
# ---------------------------------------------------------------------------
class PanicTracker:
    """
    `thread 'name' panicked at src/lib.rs:10:5:` attaches file and line to
    the most recent case of that name (emitting a FAIL case when none
    exists). Older toolchains put the message inline; newer ones print it
    on the next line, which is taken as the message when still unset.
    """

    trigger_id = "rust_test"

    def __init__(self) -> None:
        self._awaiting: Optional[IndividualTestCase] = None

    def feed(self, line: str, collector: CaseCollector) -> bool:
        match = PANIC_LINE.match(line)
        if match:
            name, inline_message, file, line_no = match.groups()
            case = collector.last_named(name)
            if case is None:
                case = collector.emit(IndividualTestCase(
                    name=name,
                    status=TestStatus.FAIL,
                    framework_id=self.trigger_id,
                ))
            if not case.file:
                case.file = file
            if case.line <= 0:
                case.line = int(line_no)
            if inline_message and not case.error_message:
                case.error_message = inline_message.strip()
            self._awaiting = None if case.error_message else case
            return True

        if self._awaiting is not None:
            case, self._awaiting = self._awaiting, None
            if is_separator(line):
                return False
            if not case.error_message:
                case.error_message = line.strip()
            return True

        return False

    def finish(self, collector: CaseCollector) -> None:
        self._awaiting = None


# ---------------------------------------------------------------------------
# (b) Python unittest failure blocks
# ---------------------------------------------------------------------------
_UNITTEST_HEADER = re.compile(r"^(FAIL|ERROR):\s+(\w+)\s+\(([\w.]+)\)")
_TRACEBACK_FILE = re.compile(r'^\s*File\s+"([^"]+)",\s+line\s+(\d+)')
_DASHED = re.compile(r"^(?:-{10,}|={10,})\s*$")


class UnittestFailureTracker:
    """
    FAIL: test_div (test_math.MathTest)
    ----------------------------------------------------------------------
    Traceback (most recent call last):
      File "test_math.py", line 12, in test_div
    AssertionError: 1 != 2
    <blank>                                        → flushed as FAIL

    An unindented line that `releases(line)` claims (a per-line grammar
    matches it) also ends the block and is left to the line grammars.
    """

    trigger_id = "unittest_python"

    def __init__(self, releases: Optional[Callable[[str], bool]] = None) -> None:
        self._pending: Optional[dict] = None
        self._releases = releases

    def feed(self, line: str, collector: CaseCollector) -> bool:
        header = _UNITTEST_HEADER.match(line)
        if header:
            self._flush(collector)
            _, name, scope = header.groups()
            self._pending = {
                "name": name,
                "class_name": strip_method_suffix(scope, name),
                "file": "",
                "line": 0,
                "message": [],
            }
            return True

        if self._pending is None:
            return False

        if not line.strip():
            self._flush(collector)
            return True

        if _DASHED.match(line):
            return True

        location = _TRACEBACK_FILE.match(line)
        if location:
            self._pending["file"] = location.group(1)
            self._pending["line"] = int(location.group(2))
            return True

        if not line.startswith((" ", "\t")) and not line.startswith("Traceback"):
            if self._releases is not None and self._releases(line):
                self._flush(collector)
                return False
            self._pending["message"].append(line.strip())
        return True

    def finish(self, collector: CaseCollector) -> None:
        self._flush(collector)

    def _flush(self, collector: CaseCollector) -> None:
        pending, self._pending = self._pending, None
        if pending is None:
            return
        collector.emit(IndividualTestCase(
            name=pending["name"],
            file=pending["file"],
            line=pending["line"],
            class_name=pending["class_name"],
            status=TestStatus.FAIL,
            error_message="\n".join(pending["message"]) or None,
            framework_id=self.trigger_id,
        ))


def strip_method_suffix(scope: str, name: str) -> str:
    """Python 3.11+ prints `(module.Class.test_x)`; reduce it to `module.Class`."""
    suffix = "." + name
    if scope.endswith(suffix) and len(scope) > len(suffix):
        return scope[: -len(suffix)]
    return scope


# ---------------------------------------------------------------------------
# (c) doctest context labels
# ---------------------------------------------------------------------------
_DOCTEST_CONTEXT = re.compile(r"^TEST CASE:\s+(.+?)\s*$")
_DOCTEST_ASSERTION = re.compile(
    r"^(.+?)(?::(\d+):|\((\d+)\):)\s+ERROR:\s*(.+)$"
)


class DoctestContextTracker:
    """
    TEST CASE:  test_division
    tests/math_test.cpp:12: ERROR: CHECK( 1 == 2 ) is NOT correct!

    Assertion lines are emitted as FAIL cases of the current context name
    until the next `TEST CASE:` line replaces it.
    """

    trigger_id = "doctest_cpp"

    def __init__(self) -> None:
        self._context: Optional[str] = None

    def feed(self, line: str, collector: CaseCollector) -> bool:
        context = _DOCTEST_CONTEXT.match(line)
        if context:
            self._context = context.group(1)
            return True

        if self._context is None:
            return False

        assertion = _DOCTEST_ASSERTION.match(line)
        if not assertion:
            return False

        file, colon_line, paren_line, message = assertion.groups()
        collector.emit(IndividualTestCase(
            name=self._context,
            file=file.strip(),
            line=int(colon_line or paren_line or 0),
            status=TestStatus.FAIL,
            error_message=message.strip(),
            framework_id=self.trigger_id,
        ))
        return True

    def finish(self, collector: CaseCollector) -> None:
        self._context = None


def build_state_machines(
    allowed_ids: Optional[set[str]] = None,
    releases: Optional[Callable[[str], bool]] = None,
) -> list:
    """Fresh trackers for one parse; a tracker is active only when its trigger id is allowed."""
    machines = [PanicTracker(), UnittestFailureTracker(releases), DoctestContextTracker()]
    if not allowed_ids:
        return machines
    return [m for m in machines if m.trigger_id in allowed_ids]
