"""
Filter Builder
==============
Renders a framework-native expression that selects one test case for a
re-run (passed to Bazel as --test_filter).

Template placeholders: ${name} ${suite} ${class} ${file}
An absent context value renders as "*".

Resolution order:
    1. framework_id given and its grammar has a template → that template
    2. candidate pool (restricted ids or full registry), individually
       runnable grammars only: a suite/class/file template whose context
       is available, else a name-only template, else any template
    3. a name-only result is overridden when the target label points at a
       specific framework family (e.g. //foo/gtest:bar)
    4. no template at all → the bare name
"""
import logging
import re
from typing import Iterable, Optional

from testnorm.core.constants import FILTER_WILDCARD
from testnorm.parser.patterns import PatternRegistry, TestCasePattern, default_registry

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{(name|suite|class|file)\}")
_CONTEXT_PLACEHOLDERS = ("${suite}", "${class}", "${file}")

# target-label tokens → grammar whose template the family uses
_TARGET_FAMILY_HINTS: list[tuple[frozenset, str]] = [
    (frozenset({"gtest", "googletest"}), "gtest_cpp"),
    (frozenset({"unittest"}), "unittest_python"),
    (frozenset({"junit", "javatests"}), "junit_java"),
    (frozenset({"ctest", "cmake"}), "ctest_output"),
    (frozenset({"go", "golang"}), "go_test"),
]


def render_filter_template(template: str, context: dict[str, Optional[str]]) -> str:
    def substitute(match: re.Match) -> str:
        value = context.get(match.group(1))
        return value if value else FILTER_WILDCARD

    return _PLACEHOLDER.sub(substitute, template)


def _is_selective(template: str) -> bool:
    return any(placeholder in template for placeholder in _CONTEXT_PLACEHOLDERS)


def _context_satisfied(template: str, context: dict[str, Optional[str]]) -> bool:
    return all(context.get(key) for key in _PLACEHOLDER.findall(template))


def _family_from_target(target: Optional[str]) -> Optional[str]:
    if not target:
        return None
    tokens = set(re.split(r"[^a-z0-9]+", target.lower()))
    for hints, pattern_id in _TARGET_FAMILY_HINTS:
        if tokens & hints:
            return pattern_id
    return None


def _pick_template(candidates: list[TestCasePattern], context: dict[str, Optional[str]]) -> Optional[str]:
    selective = [p.filter_template for p in candidates if _is_selective(p.filter_template)]
    for template in selective:
        if _context_satisfied(template, context):
            return template
    for pattern in candidates:
        if not _is_selective(pattern.filter_template):
            return pattern.filter_template
    return selective[0] if selective else None


def build_test_filter(
    name: str,
    allowed_pattern_ids: Optional[Iterable[str]] = None,
    *,
    suite: Optional[str] = None,
    class_name: Optional[str] = None,
    file: Optional[str] = None,
    target: Optional[str] = None,
    framework_id: Optional[str] = None,
    registry: Optional[PatternRegistry] = None,
) -> str:
    """Filter expression for a single case; never empty."""
    registry = registry or default_registry()
    context = {"name": name, "suite": suite, "class": class_name, "file": file}

    if framework_id:
        preferred = registry.by_id(framework_id)
        if preferred is not None and preferred.filter_template:
            return render_filter_template(preferred.filter_template, context) or name or FILTER_WILDCARD

    candidates = [
        p for p in registry.select(allowed_pattern_ids)
        if p.supports_individual and p.filter_template
    ]
    template = _pick_template(candidates, context)

    if template is not None and not _is_selective(template):
        family = registry.by_id(_family_from_target(target) or "")
        if family is not None and family.filter_template:
            logger.debug("Filter template for %s overridden by target family %s", target, family.id)
            template = family.filter_template

    if template is None:
        return name or FILTER_WILDCARD
    return render_filter_template(template, context) or name or FILTER_WILDCARD


def supports_test_filter(framework_id: Optional[str], registry: Optional[PatternRegistry] = None) -> bool:
    """True when the grammar can isolate a single case for a re-run."""
    if not framework_id:
        return False
    pattern = (registry or default_registry()).by_id(framework_id)
    return bool(pattern and pattern.supports_individual and pattern.filter_template)


def get_test_filter_args(expression: str) -> list[str]:
    """Bazel arguments for a filter expression; empty when there is nothing to filter on."""
    if not expression:
        return []
    return [f"--test_filter={expression}"]
