"""
Test Target Model
Read-only metadata of one build target, used by the framework detector.
"""
from typing import List, Optional

from pydantic import BaseModel


class TestTargetMetadata(BaseModel):
    __test__ = False

    target: str
    rule_kind: str = ""
    deps: List[str] = []
    tags: List[str] = []
    srcs: List[str] = []
    size: Optional[str] = None
    timeout: Optional[str] = None
    flaky: bool = False
    location: Optional[str] = None
