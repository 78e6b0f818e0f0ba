"""
Parse Endpoints
===============
Stateless access to the normalization engine.

Routes:
    GET  /patterns        — registered line grammars
    POST /parse/output    — raw test output → canonical cases
    POST /parse/xml       — test.xml document → canonical cases
    POST /parse/failures  — test log → failure locations
"""
import logging
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from testnorm.models.failure import FailureLocation
from testnorm.models.test_case import TestCaseParseResult
from testnorm.parser.failure_locator import locate_failures
from testnorm.parser.output_parser import extract_test_cases_from_output
from testnorm.parser.patterns import default_registry
from testnorm.parser.xml_parser import parse_structured_test_xml

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Parse"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class ParseOutputRequest(BaseModel):
    output: str
    target: str = ""
    allowed_pattern_ids: Optional[List[str]] = None


class ParseXmlRequest(BaseModel):
    xml: str
    target: str = ""
    allowed_pattern_ids: Optional[List[str]] = None


class LocateFailuresRequest(BaseModel):
    log: str
    workspace_path: str = ""
    custom_patterns: List[str] = []
    require_existing: bool = False


class PatternInfo(BaseModel):
    id: str
    framework: str
    pattern: str
    description: str
    example: str
    filter_template: Optional[str] = None
    supports_individual: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("/patterns", response_model=List[PatternInfo])
async def list_patterns():
    return [
        PatternInfo(
            id=p.id,
            framework=p.framework,
            pattern=p.pattern.pattern,
            description=p.description,
            example=p.example,
            filter_template=p.filter_template,
            supports_individual=p.supports_individual,
        )
        for p in default_registry().all_patterns()
    ]


@router.post("/parse/output", response_model=TestCaseParseResult)
async def parse_output(request: ParseOutputRequest):
    return extract_test_cases_from_output(request.output, request.target, request.allowed_pattern_ids)


@router.post("/parse/xml", response_model=TestCaseParseResult)
async def parse_xml(request: ParseXmlRequest):
    return parse_structured_test_xml(request.xml, request.target, request.allowed_pattern_ids)


@router.post("/parse/failures", response_model=List[FailureLocation])
async def parse_failures(request: LocateFailuresRequest):
    return locate_failures(
        request.log, request.workspace_path, request.custom_patterns, request.require_existing
    )
