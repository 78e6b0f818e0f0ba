"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    ENABLE_TEST_CASE_DISCOVERY   — Run per-case discovery at all (default: true)
    TEST_CASE_DISCOVERY_CACHE_MS — TTL of a discovery cache entry (default: 15000)
    QUERY_CACHE_TTL_MS           — TTL of a target-listing cache entry (default: 300000)
    BAZEL_PATH                   — Runner executable (default: bazel)
    CUSTOM_TEST_PATTERNS_FILE    — Optional YAML file with extra line grammars
    DISCOVERY_CONCURRENCY        — Max targets discovered in parallel (default: 4)
    TEST_EXECUTION_TIMEOUT       — Seconds before a test run is abandoned (default: 600)
    TESTNORM_DEBUG               — Log which grammar matched every case (default: false)
    LOG_DIR / LOG_TO_FILE        — File logging destination and switch

Boundary Rule:
    The engine never reads these values itself. The discovery layer snapshots
    them once per invocation (DiscoverySettings) and passes plain parameters
    down to the resolver and parsers.
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


ENABLE_TEST_CASE_DISCOVERY = _env_flag("ENABLE_TEST_CASE_DISCOVERY", True)
TEST_CASE_DISCOVERY_CACHE_MS = int(os.getenv("TEST_CASE_DISCOVERY_CACHE_MS", 15000))
QUERY_CACHE_TTL_MS = int(os.getenv("QUERY_CACHE_TTL_MS", 5 * 60 * 1000))
BAZEL_PATH = os.getenv("BAZEL_PATH", "bazel")
CUSTOM_TEST_PATTERNS_FILE = os.getenv("CUSTOM_TEST_PATTERNS_FILE", "")

# Parallel discovery bound (callers may override per call)
DISCOVERY_CONCURRENCY = int(os.getenv("DISCOVERY_CONCURRENCY", 4))

# Execution timeout in seconds for a single `bazel test` run
TEST_EXECUTION_TIMEOUT = int(os.getenv("TEST_EXECUTION_TIMEOUT", 600))

DEBUG_PATTERN_MATCHING = _env_flag("TESTNORM_DEBUG", False)

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_TO_FILE = _env_flag("LOG_TO_FILE", True)


@dataclass(frozen=True)
class DiscoverySettings:
    """Boundary configuration read once per discovery invocation."""
    enabled: bool = True
    cache_ttl_ms: int = 15000
    runner_path: str = "bazel"

    @classmethod
    def from_config(cls) -> "DiscoverySettings":
        return cls(
            enabled=ENABLE_TEST_CASE_DISCOVERY,
            cache_ttl_ms=TEST_CASE_DISCOVERY_CACHE_MS,
            runner_path=BAZEL_PATH,
        )
