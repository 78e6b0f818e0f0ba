"""
Testlogs Loader
===============
Locates and reads the test.xml Bazel writes under bazel-testlogs, then
hands it to the structured XML parser. This is the default loader the
UnifiedResultResolver is constructed with.

Rules:
    - The testlogs directory comes from `<runner> info bazel-testlogs`
      and is cached per (workspace, runner).
    - Any failure (runner error, missing or empty file, unreadable file)
      means "no structured result": the loader returns None.
"""
import logging
import os
from typing import Callable, Iterable, Optional

from testnorm.core.constants import TEST_XML_FILENAME
from testnorm.executor.bazel_runner import run_bazel_info
from testnorm.models.test_case import TestCaseParseResult
from testnorm.parser.patterns import PatternRegistry
from testnorm.parser.xml_parser import parse_structured_test_xml

logger = logging.getLogger(__name__)

# "<workspace>::<runner>" → testlogs directory
_testlogs_cache: dict[str, str] = {}

InfoRunner = Callable[[str, str, str], Optional[str]]


def _cache_key(workspace_path: str, runner_path: str) -> str:
    return f"{workspace_path}::{runner_path or 'bazel'}"


def get_test_logs_directory(
    workspace_path: str,
    runner_path: str = "bazel",
    info_runner: InfoRunner = run_bazel_info,
) -> Optional[str]:
    key = _cache_key(workspace_path, runner_path)
    cached = _testlogs_cache.get(key)
    if cached:
        return cached

    logs_dir = info_runner("bazel-testlogs", workspace_path, runner_path or "bazel")
    if not logs_dir:
        logger.warning("Could not locate bazel-testlogs for %s", workspace_path)
        return None

    _testlogs_cache[key] = logs_dir
    return logs_dir


def clear_test_logs_cache() -> None:
    _testlogs_cache.clear()


def build_test_xml_path(target: str, logs_directory: str) -> str:
    """`//pkg/sub:name` → `<logs_directory>/pkg/sub/name/test.xml`."""
    relative = target
    if relative.startswith("//"):
        relative = relative[2:]
    if relative.startswith(":"):
        relative = relative[1:]
    relative = relative.replace(":", os.sep)
    return os.path.join(logs_directory, relative, TEST_XML_FILENAME)


def read_structured_test_xml(
    target: str,
    workspace_path: str,
    runner_path: str = "bazel",
    allowed_pattern_ids: Optional[Iterable[str]] = None,
    registry: Optional[PatternRegistry] = None,
    info_runner: InfoRunner = run_bazel_info,
) -> Optional[TestCaseParseResult]:
    """
    Load and parse the test.xml for `target`.

    Returns
    -------
    TestCaseParseResult | None
        None when no usable structured result exists.
    """
    try:
        logs_dir = get_test_logs_directory(workspace_path, runner_path, info_runner)
        if not logs_dir:
            return None

        xml_path = build_test_xml_path(target, logs_dir)
        if not os.path.isfile(xml_path):
            logger.debug("No test.xml for %s at %s", target, xml_path)
            return None

        with open(xml_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
        if not content.strip():
            return None

        parsed = parse_structured_test_xml(content, target, allowed_pattern_ids, registry)
        if parsed.test_cases:
            logger.info("Parsed %d test cases from structured XML for %s", len(parsed.test_cases), target)
        return parsed
    except OSError as e:
        logger.warning("Failed to read structured test.xml for %s: %s", target, e)
        return None
