"""
Failure Location Model
======================
A source position a failing test pointed at, recovered from its log.

Fields:
    file        — workspace-relative path, forward slashes
    line        — 1-based line number
    message     — the log line the location came from
    source      — which grammar matched ("Built-in", "Python Traceback", ...)
"""
from pydantic import BaseModel


class FailureLocation(BaseModel):
    file: str
    line: int
    message: str = ""
    source: str = ""
