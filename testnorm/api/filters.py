"""
POST /filters
Builds the --test_filter expression that re-runs a single test case.
"""
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from testnorm.parser.filter_builder import build_test_filter, get_test_filter_args

router = APIRouter(tags=["Filters"])


class FilterRequest(BaseModel):
    name: str
    suite: Optional[str] = None
    class_name: Optional[str] = None
    file: Optional[str] = None
    target: Optional[str] = None
    framework_id: Optional[str] = None
    allowed_pattern_ids: Optional[List[str]] = None


class FilterResponse(BaseModel):
    expression: str
    args: List[str]


@router.post("/filters", response_model=FilterResponse)
async def build_filter(request: FilterRequest):
    expression = build_test_filter(
        request.name,
        request.allowed_pattern_ids,
        suite=request.suite,
        class_name=request.class_name,
        file=request.file,
        target=request.target,
        framework_id=request.framework_id,
    )
    return FilterResponse(expression=expression, args=get_test_filter_args(expression))
