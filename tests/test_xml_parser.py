"""
Unit Tests — Structured XML Parser
==================================
test.xml testcases, status classification, entity/CDATA decoding,
location recovery from messages and the <system-out> fallback merge.
"""
from testnorm.models.test_case import TestStatus
from testnorm.parser.xml_parser import (
    clean_failure_message,
    decode_text,
    decode_xml_entities,
    extract_location_from_message,
    extract_package_path,
    is_likely_user_code,
    parse_structured_test_xml,
)


# ===========================================================================
# Fixtures
# ===========================================================================
FAILING_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites tests="3" failures="2" disabled="0" errors="0" time="0." name="AllTests">
  <testsuite name="MathLibTestFail" tests="3" failures="2" disabled="0" skipped="0" errors="0" time="0.">
    <testcase name="Add" file="apps/cc/tests/gtest/test_mathlib_buggy.cc" line="6" status="run" result="completed" time="0." classname="MathLibTestFail">
      <failure message="apps/cc/tests/gtest/test_mathlib_buggy.cc:7&#x0A;Expected equality of these values:&#x0A;  add(2, 3)&#x0A;    Which is: -1&#x0A;  5&#x0A;" type=""><![CDATA[apps/cc/tests/gtest/test_mathlib_buggy.cc:7
Expected equality of these values:
  add(2, 3)
    Which is: -1
  5
]]></failure>
    </testcase>
    <testcase name="Multiply" file="apps/cc/tests/gtest/test_mathlib_buggy.cc" line="10" status="run" result="completed" time="0." classname="MathLibTestFail">
      <failure message="apps/cc/tests/gtest/test_mathlib_buggy.cc:11&#x0A;Expected equality of these values:&#x0A;  multiply(4, 2)&#x0A;    Which is: 4&#x0A;  8&#x0A;" type=""><![CDATA[apps/cc/tests/gtest/test_mathlib_buggy.cc:11
Expected equality of these values:
  multiply(4, 2)
    Which is: 4
  8
]]></failure>
    </testcase>
    <testcase name="DivideByZero" file="apps/cc/tests/gtest/test_mathlib_buggy.cc" line="14" status="run" result="completed" time="0." classname="MathLibTestFail" />
  </testsuite>
</testsuites>"""

PASSING_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites tests="3" failures="0" disabled="0" errors="0" time="0." name="AllTests">
  <testsuite name="MathLibTest" tests="3" failures="0" disabled="0" skipped="0" errors="0" time="0.">
    <testcase name="Add" file="apps/cc/tests/gtest/test_mathlib.cc" line="6" status="run" result="completed" time="0." classname="MathLibTest" />
    <testcase name="Multiply" file="apps/cc/tests/gtest/test_mathlib.cc" line="8" status="run" result="completed" time="0." classname="MathLibTest" />
    <testcase name="Divide" file="apps/cc/tests/gtest/test_mathlib.cc" line="10" status="run" result="completed" time="0." classname="MathLibTest" />
  </testsuite>
</testsuites>"""

MIXED_STATUS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites>
  <testsuite name="Mixed">
    <testcase name="SkippedCase"><skipped message="disabled via flag"/></testcase>
    <testcase name="TimeoutCase"><failure type="TIMEOUT" message="timed out">Operation timed out</failure></testcase>
    <testcase name="Crashed"><error message="NullPointerException" type="java.lang.NullPointerException">at Foo.bar(Foo.java:3)</error></testcase>
    <testcase name="SlowByAttribute" result="timeout"/>
  </testsuite>
</testsuites>"""

PYTEST_SYSTEM_OUT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites>
  <testsuite name="py_math_test" tests="2">
    <testcase name="test_add" classname="tests.test_math"/>
    <testcase name="test_divide" classname="tests.test_math"><failure message="assert 1.0 == 2"/></testcase>
  </testsuite>
  <system-out><![CDATA[
============================= test session starts ==============================
platform linux -- Python 3.11.4, pytest-7.4.0, pluggy-1.2.0
tests/test_math.py::test_add PASSED
tests/test_math.py::test_divide FAILED
tests/test_math.py:12: in test_divide
]]></system-out>
</testsuites>"""

PARTIAL_LOCATION_XML = """<testcase name="test_add" file="tests/test_math.py" line="3"/>
<testcase name="test_divide"><failure message="assert 1.0 == 2"/></testcase>
<system-out>tests/test_math.py:12: in test_divide</system-out>"""


def _by_name(result):
    return {case.name: case for case in result.test_cases}


# ===========================================================================
# 1. Whole documents
# ===========================================================================
class TestParseDocuments:

    def test_failing_gtest_xml(self):
        result = parse_structured_test_xml(FAILING_XML, "//apps:mathlib_test_fail")
        assert len(result.test_cases) == 3
        assert result.summary.failed == 2
        assert result.summary.passed == 1

        add = _by_name(result)["Add"]
        assert add.status == TestStatus.FAIL
        assert add.file == "apps/cc/tests/gtest/test_mathlib_buggy.cc"
        assert add.line == 6
        assert add.suite == "MathLibTestFail"
        assert add.class_name == "MathLibTestFail"
        assert add.framework_id == "bazel_test_xml"
        assert "Expected equality of these values" in add.error_message

    def test_identical_attribute_and_body_not_repeated(self):
        add = _by_name(parse_structured_test_xml(FAILING_XML, "//apps:t"))["Add"]
        assert add.error_message.count("Expected equality of these values") == 1

    def test_passing_gtest_xml(self):
        result = parse_structured_test_xml(PASSING_XML, "//apps:mathlib_test")
        assert len(result.test_cases) == 3
        assert result.summary.passed == 3
        assert result.summary.failed == 0
        assert all(case.status == TestStatus.PASS for case in result.test_cases)

    def test_parent_target_is_copied(self):
        result = parse_structured_test_xml(PASSING_XML, "//apps:mathlib_test")
        assert {case.parent_target for case in result.test_cases} == {"//apps:mathlib_test"}

    def test_skipped_timeout_and_error(self):
        result = parse_structured_test_xml(MIXED_STATUS_XML, "//mixed:cases")
        cases = _by_name(result)
        assert cases["SkippedCase"].status == TestStatus.SKIP
        assert cases["SkippedCase"].error_message == "disabled via flag"
        assert cases["TimeoutCase"].status == TestStatus.TIMEOUT
        assert "Operation timed out" in cases["TimeoutCase"].error_message
        assert cases["Crashed"].status == TestStatus.FAIL
        assert cases["Crashed"].error_message == "NullPointerException\nat Foo.bar(Foo.java:3)"
        assert cases["SlowByAttribute"].status == TestStatus.TIMEOUT

    def test_summary_is_tally(self):
        summary = parse_structured_test_xml(MIXED_STATUS_XML, "//mixed:cases").summary
        assert (summary.total, summary.passed, summary.failed, summary.ignored) == (4, 0, 3, 1)


# ===========================================================================
# 2. Tolerance
# ===========================================================================
class TestTolerance:

    def test_empty_document(self):
        result = parse_structured_test_xml("", "//x:t")
        assert result.test_cases == []
        assert result.summary.total == 0

    def test_document_without_testcases(self):
        result = parse_structured_test_xml('<?xml version="1.0"?><testsuites/>', "//x:t")
        assert result.test_cases == []
        assert result.summary.total == 0

    def test_truncated_document_keeps_complete_cases(self):
        xml = '<testsuite name="S"><testcase name="ok" classname="S"/><testcase name="broken"'
        result = parse_structured_test_xml(xml, "//x:t")
        assert [case.name for case in result.test_cases] == ["ok"]
        assert result.test_cases[0].status == TestStatus.PASS

    def test_garbage(self):
        result = parse_structured_test_xml("<<<not xml at all>>>", "//x:t")
        assert result.test_cases == []

    def test_entities_in_attributes(self):
        xml = '<testsuite name="S"><testcase name="a &amp; b &lt;1&gt;" classname="S"/></testsuite>'
        result = parse_structured_test_xml(xml, "//x:t")
        assert result.test_cases[0].name == "a & b <1>"

    def test_testcase_without_name_is_skipped(self):
        xml = '<testsuite name="S"><testcase classname="S"/><testcase name="kept"/></testsuite>'
        result = parse_structured_test_xml(xml, "//x:t")
        assert [case.name for case in result.test_cases] == ["kept"]


# ===========================================================================
# 3. Location recovery
# ===========================================================================
class TestLocationRecovery:

    def test_location_taken_from_failure_message(self):
        xml = (
            '<testsuite name="MathTest"><testcase name="Add" classname="MathTest">'
            '<failure message="apps/cc/tests/math_test.cc:7&#x0A;Value of: add(2, 3)"/>'
            "</testcase></testsuite>"
        )
        case = parse_structured_test_xml(xml, "//apps/cc/tests:math_test").test_cases[0]
        assert case.file == "apps/cc/tests/math_test.cc"
        assert case.line == 7

    def test_attribute_location_is_not_overwritten(self):
        add = _by_name(parse_structured_test_xml(FAILING_XML, "//apps/cc/tests/gtest:t"))["Add"]
        assert add.line == 6

    def test_package_path_is_preferred(self):
        message = "third_party/check.h:99: in helper\napps/cc/tests/math_test.cc:7: failure"
        assert extract_location_from_message(message, "apps/cc/tests") == ("apps/cc/tests/math_test.cc", 7)

    def test_library_frames_are_skipped(self):
        message = "at org/junit/Assert.java:88\nat com/example/FooTest.java:21"
        assert extract_location_from_message(message) == ("com/example/FooTest.java", 21)

    def test_last_candidate_when_nothing_looks_like_user_code(self):
        message = "org/junit/Assert.java:88 then lib/site-packages/x.py:3"
        assert extract_location_from_message(message) == ("lib/site-packages/x.py", 3)

    def test_no_candidates(self):
        assert extract_location_from_message("assert 1.0 == 2") is None

    def test_package_path(self):
        assert extract_package_path("//apps/cc/tests:unit") == "apps/cc/tests"
        assert extract_package_path("@repo//x:y") is None

    def test_user_code_heuristic(self):
        assert is_likely_user_code("src/app/foo_test.py")
        assert not is_likely_user_code("org/junit/Assert.java")
        assert not is_likely_user_code("/usr/lib/python3/site-packages/x.py")
        assert not is_likely_user_code("/usr/lib/python3.11/unittest/case.py")


# ===========================================================================
# 4. Decoding helpers
# ===========================================================================
class TestDecoding:

    def test_named_and_numeric_entities(self):
        assert decode_xml_entities("&quot;a&quot; &#65;&#x42; &apos;c&apos;") == "\"a\" AB 'c'"

    def test_cdata_is_verbatim(self):
        assert decode_text("&lt;x&gt; <![CDATA[&amp; <raw>]]>") == "<x> &amp; <raw>"

    def test_go_failure_noise_is_removed(self):
        message = "--- FAIL: TestDivide (0.00s)\n    math_test.go:12: expected 2, got 1"
        assert clean_failure_message(message) == "math_test.go:12: expected 2, got 1"

    def test_newlines_are_preserved(self):
        assert clean_failure_message("line one\nline two") == "line one\nline two"


# ===========================================================================
# 5. <system-out> fallback
# ===========================================================================
class TestSystemOutFallback:

    def test_output_replaces_location_less_structured_cases(self):
        result = parse_structured_test_xml(PYTEST_SYSTEM_OUT_XML, "//py:math_test")
        cases = _by_name(result)
        assert set(cases) == {"test_add", "test_divide"}
        assert cases["test_add"].file == "tests/test_math.py"
        assert cases["test_divide"].status == TestStatus.FAIL
        assert cases["test_divide"].line == 12
        assert cases["test_divide"].framework_id == "pytest_python"

    def test_location_less_case_is_backfilled(self):
        result = parse_structured_test_xml(PARTIAL_LOCATION_XML, "//py:math_test")
        assert len(result.test_cases) == 2
        cases = _by_name(result)
        assert cases["test_add"].line == 3

        divide = cases["test_divide"]
        assert divide.file == "tests/test_math.py"
        assert divide.line == 12
        assert divide.error_message == "assert 1.0 == 2"
        assert divide.framework_id == "bazel_test_xml"

    def test_structured_cases_with_locations_are_kept(self):
        xml = PASSING_XML.replace(
            "</testsuites>",
            "<system-out>app/tests/test_main.c:10:test_extra:PASS</system-out></testsuites>",
        )
        result = parse_structured_test_xml(xml, "//apps:mathlib_test")
        assert [case.name for case in result.test_cases] == ["Add", "Multiply", "Divide"]
