"""
Cache Store Interface

The derivation layer only needs atomic per-key get/set/delete and a
pattern listing for diagnostics. Any backend offering these works.
"""

from typing import List, Optional, Protocol


class CacheStore(Protocol):
    """Durable key-value store with per-key TTL (0 = no expiry)."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def list_keys(self, pattern: str) -> List[str]:
        ...
