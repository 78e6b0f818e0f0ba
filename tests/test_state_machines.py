"""
Unit Tests — Cross-line State Machines
======================================
CaseCollector de-duplication and the three multi-line trackers, fed
line by line.
"""
from testnorm.models.test_case import IndividualTestCase, TestStatus
from testnorm.parser.state_machines import (
    CaseCollector,
    DoctestContextTracker,
    PanicTracker,
    UnittestFailureTracker,
    build_state_machines,
    is_separator,
    strip_method_suffix,
)


def _feed(machine, lines, collector):
    consumed = [machine.feed(line, collector) for line in lines]
    machine.finish(collector)
    return consumed


# ===========================================================================
# 1. CaseCollector
# ===========================================================================
class TestCaseCollector:

    def test_parent_target_and_group_key_are_filled(self):
        collector = CaseCollector("//pkg:t")
        stored = collector.emit(IndividualTestCase(name="Add", suite="Math"))
        assert stored.parent_target == "//pkg:t"
        assert stored.group_key == "math::add"

    def test_duplicates_backfill_empty_fields(self):
        collector = CaseCollector("//pkg:t")
        collector.emit(IndividualTestCase(name="t", status=TestStatus.FAIL))
        collector.emit(IndividualTestCase(name="t", file="a.py", line=4, error_message="boom",
                                          status=TestStatus.FAIL))
        assert len(collector) == 1
        case = collector.cases[0]
        assert (case.file, case.line, case.error_message) == ("a.py", 4, "boom")

    def test_existing_fields_win(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="t", file="first.py", line=1))
        collector.emit(IndividualTestCase(name="t", file="first.py", line=2))
        assert len(collector) == 1
        assert (collector.cases[0].file, collector.cases[0].line) == ("first.py", 1)

    def test_same_name_in_different_files_stays_distinct(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="t", file="first.py", line=1, status=TestStatus.PASS))
        collector.emit(IndividualTestCase(name="t", file="second.py", line=2, status=TestStatus.FAIL))
        collector.emit(IndividualTestCase(name="t", file="second.py", error_message="boom"))
        assert [(c.file, c.line, c.status) for c in collector.cases] == [
            ("first.py", 1, TestStatus.PASS),
            ("second.py", 2, TestStatus.FAIL),
        ]
        assert collector.cases[0].error_message is None
        assert collector.cases[1].error_message == "boom"

    def test_later_status_replaces_non_failure(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="TestX", status=TestStatus.SKIP))
        collector.emit(IndividualTestCase(name="TestX", status=TestStatus.PASS))
        assert collector.cases[0].status == TestStatus.PASS

    def test_failure_and_timeout_are_sticky(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="a", status=TestStatus.FAIL))
        collector.emit(IndividualTestCase(name="a", status=TestStatus.PASS))
        collector.emit(IndividualTestCase(name="b", status=TestStatus.TIMEOUT))
        collector.emit(IndividualTestCase(name="b", status=TestStatus.SKIP))
        assert [c.status for c in collector.cases] == [TestStatus.FAIL, TestStatus.TIMEOUT]

    def test_key_is_case_insensitive(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="Add", suite="Math"))
        collector.emit(IndividualTestCase(name="add", suite="MATH"))
        assert len(collector) == 1

    def test_last_named(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="x", suite="A"))
        second = collector.emit(IndividualTestCase(name="x", suite="B"))
        assert collector.last_named("x") is second
        assert collector.last_named("y") is None

    def test_cases_returns_copy(self):
        collector = CaseCollector()
        collector.emit(IndividualTestCase(name="x"))
        collector.cases.clear()
        assert len(collector) == 1


# ===========================================================================
# 2. Helpers
# ===========================================================================
class TestHelpers:

    def test_separators(self):
        assert is_separator("")
        assert is_separator("   ")
        assert is_separator("---- tests::x stdout ----")
        assert is_separator("note: run with `RUST_BACKTRACE=1`")
        assert is_separator("failures:")
        assert not is_separator("assertion failed")

    def test_strip_method_suffix(self):
        assert strip_method_suffix("test_math.MathTest.test_add", "test_add") == "test_math.MathTest"
        assert strip_method_suffix("test_math.MathTest", "test_add") == "test_math.MathTest"
        assert strip_method_suffix(".test_add", "test_add") == ".test_add"

    def test_build_state_machines(self):
        assert len(build_state_machines(None)) == 3
        assert [type(m) for m in build_state_machines({"rust_test"})] == [PanicTracker]
        assert build_state_machines({"gtest_cpp"}) == []


# ===========================================================================
# 3. PanicTracker
# ===========================================================================
class TestPanicTracker:

    def test_location_attached_to_existing_case(self):
        collector = CaseCollector("//rs:t")
        collector.emit(IndividualTestCase(name="tests::it_fails", status=TestStatus.FAIL))
        consumed = _feed(PanicTracker(), [
            "thread 'tests::it_fails' panicked at src/lib.rs:10:5:",
            "assertion `left == right` failed",
            "  left: 1",
        ], collector)
        assert consumed == [True, True, False]
        case = collector.cases[0]
        assert (case.file, case.line) == ("src/lib.rs", 10)
        assert case.error_message == "assertion `left == right` failed"

    def test_separator_after_panic_is_not_consumed(self):
        collector = CaseCollector()
        consumed = _feed(PanicTracker(), ["thread 'x' panicked at src/a.rs:3:1:", "", "later"], collector)
        assert consumed == [True, False, False]
        assert collector.cases[0].error_message is None

    def test_unknown_name_emits_failure(self):
        collector = CaseCollector()
        _feed(PanicTracker(), ["thread 'main' panicked at 'boom', src/main.rs:7:3"], collector)
        case = collector.cases[0]
        assert case.name == "main"
        assert case.status == TestStatus.FAIL
        assert case.framework_id == "rust_test"
        assert case.error_message == "boom"


# ===========================================================================
# 4. UnittestFailureTracker
# ===========================================================================
class TestUnittestFailureTracker:

    def test_block_is_flushed_at_end_of_input(self):
        collector = CaseCollector()
        _feed(UnittestFailureTracker(), [
            "ERROR: test_load (pkg.test_io.IoTest.test_load)",
            "----------------------------------------------------------------------",
            "Traceback (most recent call last):",
            '  File "/usr/lib/python3.11/unittest/case.py", line 57, in testPartExecutor',
            '  File "pkg/test_io.py", line 30, in test_load',
            "    open(path)",
            "FileNotFoundError: [Errno 2] No such file or directory: 'x'",
        ], collector)
        case = collector.cases[0]
        assert case.name == "test_load"
        assert case.class_name == "pkg.test_io.IoTest"
        assert (case.file, case.line) == ("pkg/test_io.py", 30)
        assert case.error_message == "FileNotFoundError: [Errno 2] No such file or directory: 'x'"
        assert case.status == TestStatus.FAIL

    def test_new_header_flushes_previous_block(self):
        collector = CaseCollector()
        _feed(UnittestFailureTracker(), [
            "FAIL: test_a (m.T)",
            "AssertionError: a",
            "FAIL: test_b (m.T)",
            "AssertionError: b",
        ], collector)
        assert [(c.name, c.error_message) for c in collector.cases] == [
            ("test_a", "AssertionError: a"),
            ("test_b", "AssertionError: b"),
        ]

    def test_line_claimed_by_a_grammar_ends_the_block(self):
        collector = CaseCollector()
        tracker = UnittestFailureTracker(releases=lambda line: line.startswith("--- PASS"))
        consumed = _feed(tracker, [
            "FAIL: test_a (m.T)",
            "AssertionError: a",
            "--- PASS: TestB (0.00s)",
            "trailing noise",
        ], collector)
        assert consumed == [True, True, False, False]
        assert [(c.name, c.error_message) for c in collector.cases] == [("test_a", "AssertionError: a")]

    def test_lines_outside_a_block_are_ignored(self):
        collector = CaseCollector()
        consumed = _feed(UnittestFailureTracker(), ["test_a (m.T) ... ok", "Ran 1 test in 0.0s"], collector)
        assert consumed == [False, False]
        assert len(collector) == 0


# ===========================================================================
# 5. DoctestContextTracker
# ===========================================================================
class TestDoctestContextTracker:

    def test_assertion_without_context_is_left_alone(self):
        collector = CaseCollector()
        consumed = _feed(DoctestContextTracker(), ["tests/a.cpp:3: ERROR: CHECK( x ) is NOT correct!"], collector)
        assert consumed == [False]
        assert len(collector) == 0

    def test_context_switches_between_cases(self):
        collector = CaseCollector()
        _feed(DoctestContextTracker(), [
            "TEST CASE:  first",
            "tests/a.cpp:3: ERROR: CHECK( x ) is NOT correct!",
            "TEST CASE:  second",
            "tests/a.cpp(9): ERROR: REQUIRE( y ) is NOT correct!",
        ], collector)
        assert [(c.name, c.line) for c in collector.cases] == [("first", 3), ("second", 9)]
        assert collector.cases[1].error_message == "REQUIRE( y ) is NOT correct!"
