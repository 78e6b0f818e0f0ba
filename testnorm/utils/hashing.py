"""
Hash Utilities
==============
Deterministic content and cache-key hashes.

Rules:
    - content_hash: SHA-1 of the raw text, full hex digest. Stored next to a
      discovery result; identical text always gives the identical hash.
    - query_key: SHA-256 truncated to 16 hex chars. Inputs are sorted copies,
      so parameter order never changes the key and callers' lists are not
      mutated.
"""
import hashlib
from typing import Iterable


def content_hash(text: str) -> str:
    """
    SHA-1 hex digest of `text` ("" hashes like any other string).

    Parameters
    ----------
    text : str
        Raw test output or XML the result was derived from.

    Returns
    -------
    str
        40-character hex digest.
    """
    return hashlib.sha1((text or "").encode("utf-8")).hexdigest()


def query_key(paths: Iterable[str], types: Iterable[str]) -> str:
    """16-char key for a (paths, types) query, independent of ordering."""
    raw = "|".join(sorted(paths or [])) + ":" + "|".join(sorted(types or []))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
