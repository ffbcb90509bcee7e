"""
Cache Key Builder

Keys follow `<domain>:<derivation>:<entityId>` or
`<domain>:<derivation>:<contentHash>`. Parameter sets are hashed after
canonicalization so the same filters in any order share one entry.
"""

import hashlib
import json
from typing import Any, Dict, Iterable


def hash_params(params: Dict[str, Any]) -> str:
    """
    Deterministic 128-bit digest of a parameter object.

    Keys are sorted at every nesting level before hashing, so
    {"a": 1, "b": 2} and {"b": 2, "a": 1} hash identically.
    """
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def hash_ids(ids: Iterable[str]) -> str:
    """Content hash of an unordered id collection."""
    return hashlib.md5(",".join(sorted(str(i) for i in ids)).encode("utf-8")).hexdigest()


def make_key(domain: str, derivation: str, *parts: Any) -> str:
    """Create a cache key from its logical parts."""
    return ":".join([domain, derivation, *(str(p) for p in parts)])


def filtered_key(domain: str, derivation: str, params: Dict[str, Any]) -> str:
    """Key for a derivation parameterized by a filter set."""
    return make_key(domain, derivation, hash_params(params))
