"""
Test Case Discovery Service
===========================
Boundary layer that finds the individual cases inside a test target:
run the target, resolve the result, cache it.

Lifecycle (per target):
    1. Snapshot DiscoverySettings (enabled, cache TTL, runner path)
    2. Disabled → empty result
    3. Fresh cache entry → cached result
    4. Run `bazel test` (worker thread)
    5. Look up target metadata (bazel query of its package on a miss)
       and narrow the grammar set from it / the test type
    6. Restricted set with no individually runnable grammar → empty result
    7. UnifiedResultResolver.resolve_with_output
    8. Cache the result with the SHA-1 of the combined output

Never raises: any failure is logged and yields an empty result.
"""
import asyncio
import logging
from typing import Callable, Iterable, Optional

from testnorm.core.config import DISCOVERY_CONCURRENCY, TEST_EXECUTION_TIMEOUT, DiscoverySettings
from testnorm.core.constants import PROVENANCE_NONE
from testnorm.executor.bazel_runner import RunOutput, run_bazel_test
from testnorm.models.test_case import UnifiedTestResult
from testnorm.parser.framework_detector import resolve_allowed_patterns
from testnorm.parser.patterns import PatternRegistry
from testnorm.services.cache_service import DiscoveryCache
from testnorm.services.resolver import UnifiedResultResolver
from testnorm.services.target_catalog import TargetCatalog
from testnorm.utils.hashing import content_hash

logger = logging.getLogger(__name__)

# (target, workspace_path, runner_path) → RunOutput
TestRunner = Callable[[str, str, str], RunOutput]


def _default_runner(target: str, workspace_path: str, runner_path: str) -> RunOutput:
    return run_bazel_test(target, workspace_path, runner_path, TEST_EXECUTION_TIMEOUT)


class TestCaseDiscoveryService:
    """
    Usage:
        service = TestCaseDiscoveryService()
        result = await service.discover("//app:tests", "/repo", "cc_test")
    """

    __test__ = False

    def __init__(
        self,
        resolver: Optional[UnifiedResultResolver] = None,
        runner: TestRunner = _default_runner,
        cache: Optional[DiscoveryCache] = None,
        catalog: Optional[TargetCatalog] = None,
        settings_provider: Callable[[], DiscoverySettings] = DiscoverySettings.from_config,
        registry: Optional[PatternRegistry] = None,
    ) -> None:
        self.resolver = resolver or UnifiedResultResolver(registry=registry)
        self.registry = registry or self.resolver.registry
        self.runner = runner
        self.cache = cache if cache is not None else DiscoveryCache()
        self.catalog = catalog if catalog is not None else TargetCatalog()
        self.settings_provider = settings_provider

    async def discover(
        self,
        target: str,
        workspace_path: str,
        test_type: Optional[str] = None,
    ) -> UnifiedTestResult:
        try:
            settings = self.settings_provider()
            if not settings.enabled:
                logger.info("Test case discovery disabled by configuration for %s", target)
                return UnifiedTestResult(source=PROVENANCE_NONE)

            cached = self.cache.get(target)
            if cached is not None:
                logger.info("Using cached test case discovery for %s", target)
                return cached

            run = await asyncio.to_thread(self.runner, target, workspace_path, settings.runner_path)
            output = run.combined
            output_hash = content_hash(output)

            metadata = await asyncio.to_thread(self.catalog.lookup, target, workspace_path, settings.runner_path)
            allowed = resolve_allowed_patterns(metadata, test_type, self.registry)
            if allowed and not any(p.supports_individual for p in self.registry.select(allowed)):
                logger.debug("Skipping case parsing for %s: no allowed pattern supports individual cases", target)
                empty = UnifiedTestResult(source=PROVENANCE_NONE)
                self.cache.set(target, empty, output_hash, settings.cache_ttl_ms)
                return empty

            result = await asyncio.to_thread(
                self.resolver.resolve_with_output,
                target, workspace_path, settings.runner_path, output, allowed,
            )
            self.cache.set(target, result, output_hash, settings.cache_ttl_ms)

            if result.test_cases:
                logger.info("Found %d test cases for %s (source: %s)", len(result.test_cases), target, result.source)
            else:
                logger.warning("No test cases discovered for %s; returning empty result.", target)
            return result
        except Exception as e:
            logger.warning("Failed to discover test cases for %s: %s", target, e, exc_info=True)
            return UnifiedTestResult(source=PROVENANCE_NONE)

    async def discover_many(
        self,
        targets: Iterable[str],
        workspace_path: str,
        concurrency: int = DISCOVERY_CONCURRENCY,
        test_type: Optional[str] = None,
    ) -> dict[str, UnifiedTestResult]:
        """Discover several targets, at most `concurrency` at a time."""
        semaphore = asyncio.Semaphore(max(1, concurrency))
        unique = list(dict.fromkeys(targets))

        async def bounded(target: str) -> UnifiedTestResult:
            async with semaphore:
                return await self.discover(target, workspace_path, test_type)

        results = await asyncio.gather(*(bounded(target) for target in unique))
        return dict(zip(unique, results))

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        return self.cache.clear(pattern)

    def cache_stats(self) -> dict:
        return self.cache.stats()
