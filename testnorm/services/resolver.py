"""
Unified Result Resolver
=======================
Single entry point that turns "a target that just ran" into a canonical
result with a provenance tag.

Provenance:
    xml    — cases came from the structured test.xml (possibly enriched
             with output-derived cases)
    output — no structured result; cases came from the raw run output
    none   — nothing usable

The resolver never runs processes itself. The structured-result loader is
injected, so it can be stubbed in tests or swapped for another source.
"""
import logging
from functools import partial
from typing import Callable, Iterable, Optional

from testnorm.core.constants import PROVENANCE_NONE, PROVENANCE_OUTPUT, PROVENANCE_XML
from testnorm.models.test_case import TestCaseParseResult, UnifiedTestResult
from testnorm.parser.merge import merge_structured_with_fallback, summarize_test_cases
from testnorm.parser.output_parser import extract_test_cases_from_output
from testnorm.parser.patterns import PatternRegistry, default_registry
from testnorm.services.testlogs import read_structured_test_xml

logger = logging.getLogger(__name__)

# (target, workspace_path, runner_path, allowed_pattern_ids) → result | None
StructuredLoader = Callable[[str, str, str, Optional[list[str]]], Optional[TestCaseParseResult]]


class UnifiedResultResolver:
    """
    Usage:
        resolver = UnifiedResultResolver()
        resolver.resolve("//app:tests", "/repo", "bazel")
        resolver.resolve_with_output("//app:tests", "/repo", "bazel", run.combined)
    """

    def __init__(self, loader: Optional[StructuredLoader] = None,
                 registry: Optional[PatternRegistry] = None) -> None:
        self.registry = registry or default_registry()
        self.loader = loader or partial(read_structured_test_xml, registry=self.registry)

    def _load(self, target: str, workspace_path: str, runner_path: str,
              allowed: Optional[list[str]]) -> Optional[TestCaseParseResult]:
        try:
            return self.loader(target, workspace_path, runner_path, allowed)
        except Exception as e:
            logger.warning("Structured result loader failed for %s: %s", target, e, exc_info=True)
            return None

    def resolve(
        self,
        target: str,
        workspace_path: str,
        runner_path: str,
        allowed_pattern_ids: Optional[Iterable[str]] = None,
    ) -> UnifiedTestResult:
        """Structured result tagged `xml`, else an empty result tagged `none`."""
        allowed = list(allowed_pattern_ids) if allowed_pattern_ids else None
        structured = self._load(target, workspace_path, runner_path, allowed)
        if structured is not None and structured.test_cases:
            return UnifiedTestResult(
                test_cases=structured.test_cases,
                summary=structured.summary,
                source=PROVENANCE_XML,
            )
        return UnifiedTestResult(source=PROVENANCE_NONE)

    def resolve_with_output(
        self,
        target: str,
        workspace_path: str,
        runner_path: str,
        output: str,
        allowed_pattern_ids: Optional[Iterable[str]] = None,
    ) -> UnifiedTestResult:
        """
        Structured first, raw output second.

        Both present: output-derived cases are merged into the structured
        ones. Structured absent: the output is parsed with the restricted
        grammar set and, when that finds nothing, once more unrestricted.
        """
        allowed = list(allowed_pattern_ids) if allowed_pattern_ids else None
        resolved = self.resolve(target, workspace_path, runner_path, allowed)

        if resolved.source == PROVENANCE_XML:
            if not output:
                return resolved
            fallback = extract_test_cases_from_output(output, target, allowed, self.registry)
            merged = merge_structured_with_fallback(resolved.test_cases, fallback.test_cases)
            if merged is resolved.test_cases:
                return resolved
            return UnifiedTestResult(
                test_cases=merged,
                summary=summarize_test_cases(merged),
                source=PROVENANCE_XML,
            )

        parsed = self.parse_output(target, output, allowed)
        if not parsed.test_cases:
            return UnifiedTestResult(summary=parsed.summary, source=PROVENANCE_NONE)
        return UnifiedTestResult(
            test_cases=parsed.test_cases,
            summary=parsed.summary,
            source=PROVENANCE_OUTPUT,
        )

    def parse_output(self, target: str, output: str,
                     allowed: Optional[list[str]] = None) -> TestCaseParseResult:
        """Line-parse `output`, retrying unrestricted when a restricted pass finds nothing."""
        parsed = extract_test_cases_from_output(output, target, allowed, self.registry)
        if not parsed.test_cases and allowed:
            logger.info("No test cases matched the restricted patterns for %s; retrying with all patterns", target)
            parsed = extract_test_cases_from_output(output, target, None, self.registry)
        return parsed
