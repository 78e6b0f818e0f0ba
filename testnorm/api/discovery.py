"""
Discovery Endpoints
===================
Runs Bazel test targets and reports their individual cases.

Routes:
    POST   /discover          — discover one or more targets
    GET    /discovery/cache   — cache size and keys
    DELETE /discovery/cache   — clear the cache (optionally by key substring)
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, field_validator

from testnorm.core.config import DISCOVERY_CONCURRENCY
from testnorm.models.test_case import UnifiedTestResult
from testnorm.services.discovery_service import TestCaseDiscoveryService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Discovery"])

discovery_service = TestCaseDiscoveryService()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class DiscoverRequest(BaseModel):
    targets: List[str]
    workspace_path: str
    test_type: Optional[str] = None
    concurrency: int = DISCOVERY_CONCURRENCY

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: List[str]) -> List[str]:
        cleaned = [t.strip() for t in v if t and t.strip()]
        if not cleaned:
            raise ValueError("At least one target label is required")
        for target in cleaned:
            if not target.startswith(("//", "@", ":")):
                raise ValueError(f"Not a Bazel target label: {target}")
        return cleaned

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be >= 1")
        return v


class DiscoverResponse(BaseModel):
    results: Dict[str, UnifiedTestResult]


class CacheStats(BaseModel):
    size: int
    keys: List[str]


class CacheClearResponse(BaseModel):
    removed: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/discover", response_model=DiscoverResponse)
async def discover(request: DiscoverRequest):
    logger.info("Discovering %d target(s) in %s", len(request.targets), request.workspace_path)
    results = await discovery_service.discover_many(
        request.targets,
        request.workspace_path,
        concurrency=request.concurrency,
        test_type=request.test_type,
    )
    return DiscoverResponse(results=results)


@router.get("/discovery/cache", response_model=CacheStats)
async def get_cache_stats():
    return CacheStats(**discovery_service.cache_stats())


@router.delete("/discovery/cache", response_model=CacheClearResponse)
async def clear_cache(pattern: Optional[str] = None):
    return CacheClearResponse(removed=discovery_service.clear_cache(pattern))
