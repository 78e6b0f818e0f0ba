"""
Failure Locator
===============
Scans a failing test's log for lines that point at a source position
(file + line), so a UI can jump to the failing assertion.

Pipeline:
    1. Compile custom location grammars (invalid ones are dropped)
    2. Per line, keep the longest match across all grammars
    3. Trim Bazel's runfiles prefix (.../_main/) and the workspace prefix
    4. Drop paths in ignored directories (site-packages, external, ...)
    5. De-duplicate by (file, line), first occurrence wins

Contract:
    - Deterministic and regex only.
    - Tolerant: never raises, returns what it can.
"""
import logging
import os
import re
from typing import Iterable, Optional

from testnorm.models.failure import FailureLocation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Location Grammars (group 1 = file, group 2 = line)
# ---------------------------------------------------------------------------
_BUILTIN = "Built-in"

FAILURE_LOCATION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^(.+?):(\d+): Failure"), _BUILTIN),
    (re.compile(r"^(.+?):(\d+): FAILED"), _BUILTIN),
    (re.compile(r"^(.+?):(\d+):\d+: error"), _BUILTIN),
    (re.compile(r"^(.+?)\((\d+)\): error"), _BUILTIN),
    (re.compile(r"^(.+?):(\d+): error"), _BUILTIN),
    (re.compile(r"^FAIL .*?\((.+?):(\d+)\)$"), _BUILTIN),
    (re.compile(r"^(.+?):(\d+):.+?:FAIL:"), _BUILTIN),
    (re.compile(r"^Error: (.+?):(\d+): "), _BUILTIN),
    (re.compile(r'^\s*File "(.*?)", line (\d+), in .+$'), "Python Traceback"),
    (re.compile(r"^(.+?):(\d+): AssertionError$"), "Python AssertionError"),
    (re.compile(r"^\[----\] (.+?):(\d+): Assertion Failed$"), "Criterion"),
    (re.compile(r"^.*panicked at .*?([^\s:']+):(\d+):\d+:?$"), "Rust panic"),
    (re.compile(r"^(.*?)(?::(\d+):|\((\d+)\):)\s+ERROR:\s+(?:REQUIRE|CHECK|CHECK_EQ)\(\s*(.*?)\s*\)\s+is\s+NOT\s+correct!"), "doctest"),
    (re.compile(r"^Assertion failed: .*?, function .*?, file (.+?), line (\d+)\."), _BUILTIN),
]


# ---------------------------------------------------------------------------
# Path Ignore Rules
# ---------------------------------------------------------------------------
_IGNORE_PATTERNS: list[str] = [
    "site-packages",
    "external",
    "__pycache__",
    ".venv",
    "venv",
    "/usr/lib",
    "/usr/include",
]


def _should_ignore(file_path: str) -> bool:
    normalized = "/" + file_path.replace("\\", "/") + "/"
    return any(
        (pattern in normalized) if pattern.startswith("/") else (f"/{pattern}/" in normalized)
        for pattern in _IGNORE_PATTERNS
    )


# ---------------------------------------------------------------------------
# Path Normalization
# ---------------------------------------------------------------------------
def normalize_path(raw_path: str, workspace_path: str = "") -> str:
    """
    Clean workspace-relative path with forward slashes.

    Steps:
        1. Strip quotes/whitespace, backslashes → forward slashes
        2. Cut everything up to the last `/_main/` (runfiles root)
        3. Remove the workspace prefix if present
        4. Remove leading `./` and slashes
    """
    path = raw_path.strip().strip("'\"").replace("\\", "/")

    marker = "/_main/"
    if marker in path:
        path = path[path.rindex(marker) + len(marker):]

    if workspace_path:
        ws = workspace_path.replace("\\", "/").rstrip("/")
        if ws and path.startswith(ws + "/"):
            path = path[len(ws) + 1:]

    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def compile_custom_patterns(patterns: Iterable[str]) -> list[tuple[re.Pattern, str]]:
    compiled: list[tuple[re.Pattern, str]] = []
    for raw in patterns or []:
        try:
            pattern = re.compile(raw)
        except re.error as e:
            logger.warning("Invalid failure-location regex '%s' dropped: %s", raw, e)
            continue
        if pattern.groups < 2:
            logger.warning("Failure-location regex '%s' needs file and line groups; dropped", raw)
            continue
        compiled.append((pattern, "Custom Setting"))
    return compiled


def _file_and_line(match: re.Match) -> Optional[tuple[str, int]]:
    """First non-empty group is the file, the next numeric group the line."""
    groups = match.groups()
    file = next((g for g in groups if g and not g.isdigit()), None)
    line = next((g for g in groups if g and g.isdigit()), None)
    if not file or not line:
        return None
    return file, int(line)


def locate_failures(
    test_log: str,
    workspace_path: str = "",
    custom_patterns: Iterable[str] = (),
    require_existing: bool = False,
) -> list[FailureLocation]:
    """
    Extract failure locations from a test log.

    Parameters
    ----------
    test_log : str
        Raw test output.
    workspace_path : str
        Workspace root stripped from absolute paths.
    custom_patterns : iterable of str
        Extra regexes (group 1 = file, group 2 = line), tried alongside the
        built-in grammars.
    require_existing : bool
        Drop locations whose file does not exist under workspace_path.

    Returns
    -------
    list[FailureLocation]
        In log order, de-duplicated by (file, line). Never raises.
    """
    if not test_log or not test_log.strip():
        return []

    patterns = compile_custom_patterns(custom_patterns) + FAILURE_LOCATION_PATTERNS
    locations: list[FailureLocation] = []
    seen: set[tuple[str, int]] = set()

    for line in test_log.splitlines():
        best: Optional[tuple[re.Match, str]] = None
        for pattern, source in patterns:
            match = pattern.search(line)
            if match and (best is None or len(match.group(0)) > len(best[0].group(0))):
                best = (match, source)
        if best is None:
            continue

        found = _file_and_line(best[0])
        if found is None:
            continue
        file = normalize_path(found[0], workspace_path)
        if not file or _should_ignore(file):
            continue
        if require_existing and not os.path.isfile(os.path.join(workspace_path, file)):
            logger.debug("Failure location %s not found in workspace; skipped", file)
            continue

        key = (file, found[1])
        if key in seen:
            continue
        seen.add(key)
        locations.append(FailureLocation(file=file, line=found[1], message=line.strip(), source=best[1]))

    logger.info("Located %d failure position(s) in log (%d chars)", len(locations), len(test_log))
    return locations
