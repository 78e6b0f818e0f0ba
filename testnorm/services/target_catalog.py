"""
Target Catalog
==============
Lists test targets (and their rule kind / deps) via `bazel query`,
memoised in a QueryCache. The Framework Detector reads target metadata
from here.

Query output is `--output=streamed_jsonproto`: one JSON object per line,
of which only `"type": "RULE"` records are used.
"""
import json
import logging
from typing import Callable, Iterable, Optional

from testnorm.core.config import BAZEL_PATH
from testnorm.executor.bazel_runner import run_bazel_query
from testnorm.models.target import TestTargetMetadata
from testnorm.services.cache_service import QueryCache

logger = logging.getLogger(__name__)

DEFAULT_TEST_TYPES = ["cc_test", "py_test", "go_test", "rust_test", "java_test"]

# (paths, types, workspace_path, runner_path) → targets
TargetLister = Callable[[list[str], list[str], str, str], list[TestTargetMetadata]]


# ---------------------------------------------------------------------------
# Query building / decoding
# ---------------------------------------------------------------------------
def sanitize_query_paths(paths: Iterable[str]) -> list[str]:
    cleaned = [p.strip() for p in paths or [] if p and p.strip()]
    return cleaned or ["//"]


def build_query(path: str, types: Iterable[str]) -> str:
    """`kind(cc_test, //app/...) union kind(test_suite, //app/...)`."""
    all_types = list(dict.fromkeys([*types, "test_suite"]))
    scope = path if path.endswith("...") else f"{path.rstrip('/')}/..."
    if scope == "/...":
        scope = "//..."
    return " union ".join(f"kind({kind}, {scope})" for kind in all_types)


def package_of(target: str) -> Optional[str]:
    """`//app/math:tests` → `//app/math`; None for package-relative labels."""
    label = (target or "").strip()
    if "//" not in label:
        return None
    package = label.split(":", 1)[0]
    if package.endswith("/..."):
        package = package[: -len("/...")]
    return package or None


def _attribute(rule: dict, name: str) -> Optional[dict]:
    for attribute in rule.get("attribute") or []:
        if attribute.get("name") == name:
            return attribute
    return None


def parse_query_line(line: str) -> Optional[TestTargetMetadata]:
    """One streamed_jsonproto record → metadata; None for non-rule or bad lines."""
    if not line or not line.strip():
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        logger.warning("Failed to parse Bazel query line: %s", line[:200])
        return None

    if not isinstance(record, dict) or record.get("type") != "RULE" or not record.get("rule"):
        return None

    rule = record["rule"]

    def string_list(name: str) -> list[str]:
        attribute = _attribute(rule, name)
        return list(attribute.get("stringListValue") or []) if attribute else []

    def string_value(name: str) -> Optional[str]:
        attribute = _attribute(rule, name)
        return attribute.get("stringValue") if attribute else None

    flaky = _attribute(rule, "flaky")
    return TestTargetMetadata(
        target=rule.get("name", ""),
        rule_kind=rule.get("ruleClass", ""),
        deps=string_list("deps"),
        tags=string_list("tags"),
        srcs=string_list("srcs"),
        size=string_value("size"),
        timeout=string_value("timeout"),
        flaky=bool(flaky.get("booleanValue", False)) if flaky else False,
        location=rule.get("location"),
    )


def parse_query_output(output: str) -> list[TestTargetMetadata]:
    targets = []
    for line in (output or "").splitlines():
        metadata = parse_query_line(line)
        if metadata is not None and metadata.target:
            targets.append(metadata)
    return targets


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class TargetCatalog:
    """
    Usage:
        catalog = TargetCatalog("/repo")
        catalog.list_targets(["//app"], ["cc_test"])
        catalog.get("//app:tests")
        catalog.lookup("//lib:tests", "/other/repo")   # lists //lib on a miss
    """

    def __init__(
        self,
        workspace_path: str = "",
        runner_path: str = BAZEL_PATH,
        lister: Optional[TargetLister] = None,
        cache: Optional[QueryCache] = None,
    ) -> None:
        self.workspace_path = workspace_path
        self.runner_path = runner_path
        self._lister = lister or self._query_targets
        self._cache: QueryCache = cache if cache is not None else QueryCache()
        self._targets: dict[tuple[str, str], TestTargetMetadata] = {}

    def list_targets(
        self,
        paths: Iterable[str] = (),
        types: Iterable[str] = (),
        workspace_path: Optional[str] = None,
        runner_path: Optional[str] = None,
    ) -> list[TestTargetMetadata]:
        workspace_path = self.workspace_path if workspace_path is None else workspace_path
        runner_path = runner_path or self.runner_path
        paths = sanitize_query_paths(paths)
        types = list(types) or list(DEFAULT_TEST_TYPES)
        key = f"{workspace_path}:{QueryCache.create_key(paths, types)}"

        targets = self._cache.get(key)
        if targets is None:
            targets = self._lister(paths, types, workspace_path, runner_path)
            self._cache.set(key, targets)
            logger.info("Found %d test targets for %s", len(targets), ", ".join(paths))

        for metadata in targets:
            self._targets[(workspace_path, metadata.target)] = metadata
        return list(targets)

    def get(self, target: str, workspace_path: Optional[str] = None) -> Optional[TestTargetMetadata]:
        workspace_path = self.workspace_path if workspace_path is None else workspace_path
        return self._targets.get((workspace_path, target))

    def lookup(
        self,
        target: str,
        workspace_path: Optional[str] = None,
        runner_path: Optional[str] = None,
    ) -> Optional[TestTargetMetadata]:
        """Metadata for `target`, listing its package first when it is not known yet."""
        metadata = self.get(target, workspace_path)
        if metadata is not None:
            return metadata

        package = package_of(target)
        if package is None:
            return None
        try:
            self.list_targets([package], workspace_path=workspace_path, runner_path=runner_path)
        except Exception as e:
            logger.warning("Listing targets in %s failed: %s", package, e)
            return None
        return self.get(target, workspace_path)

    def register(self, metadata: TestTargetMetadata, workspace_path: Optional[str] = None) -> None:
        workspace_path = self.workspace_path if workspace_path is None else workspace_path
        self._targets[(workspace_path, metadata.target)] = metadata

    def _query_targets(
        self, paths: list[str], types: list[str], workspace_path: str, runner_path: str
    ) -> list[TestTargetMetadata]:
        found: dict[str, TestTargetMetadata] = {}
        for path in paths:
            output = run_bazel_query(build_query(path, types), workspace_path, runner_path)
            if output.exit_code != 0:
                logger.warning("Bazel query for %s exited with %d: %s",
                               path, output.exit_code, output.error or output.stderr.strip()[:500])
            for metadata in parse_query_output(output.stdout):
                found[metadata.target] = metadata
        return list(found.values())
