"""
Pytest Configuration and Shared Fixtures

In-memory fakes for the three external interfaces (cache store, source
data provider, synthesis engine) plus a fully wired runtime on top.
"""

import fnmatch
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from account_intel.cache.derivation import DerivationCache
from account_intel.collector.client import CALL, InteractionRecord, UserProfile
from account_intel.errors import CacheStoreUnavailable, UpstreamUnavailable
from account_intel.service import AccountIntelligence
from account_intel.utils.config import Settings


# ============================================================================
# Cache Store Fakes
# ============================================================================

class FakeCacheStore:
    """Dict-backed CacheStore with a manual clock for TTL expiry."""

    def __init__(self):
        self.now = 0.0
        self.data: Dict[str, tuple] = {}
        self.set_calls: List[tuple] = []

    def advance(self, seconds: float):
        self.now += seconds

    def _live(self, key: str) -> bool:
        if key not in self.data:
            return False
        _, expires_at = self.data[key]
        if expires_at is not None and self.now >= expires_at:
            del self.data[key]
            return False
        return True

    async def get(self, key: str) -> Optional[bytes]:
        return self.data[key][0] if self._live(key) else None

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        expires_at = self.now + ttl_seconds if ttl_seconds > 0 else None
        self.data[key] = (value, expires_at)
        self.set_calls.append((key, ttl_seconds))

    async def delete(self, key: str) -> bool:
        if self._live(key):
            del self.data[key]
            return True
        return False

    async def list_keys(self, pattern: str) -> List[str]:
        return [k for k in list(self.data) if self._live(k) and fnmatch.fnmatch(k, pattern)]


class FailingStore:
    """A store whose backend is down."""

    async def get(self, key):
        raise CacheStoreUnavailable("connection refused")

    async def set(self, key, value, ttl_seconds):
        raise CacheStoreUnavailable("connection refused")

    async def delete(self, key):
        raise CacheStoreUnavailable("connection refused")

    async def list_keys(self, pattern):
        raise CacheStoreUnavailable("connection refused")


# ============================================================================
# Source Data Fake
# ============================================================================

def make_record(
    record_id: str,
    type: str = CALL,
    title: Optional[str] = None,
    date: str = "2024-05-01",
    content: Optional[str] = None,
) -> InteractionRecord:
    return InteractionRecord(
        id=record_id,
        type=type,
        title=title or f"{type.title()} {record_id}",
        date=date,
        content=f"Transcript of {record_id}" if content is None else content,
        participants=["Alex Rivera", "Sam Chen"],
    )


class FakeProvider:
    """Scripted SourceDataProvider."""

    def __init__(self):
        self.entities: List[str] = []
        self.accounts: Dict[str, Dict] = {}
        self.records: Dict[str, List[InteractionRecord]] = {}
        self.users: List[UserProfile] = []
        self.failing_entities: set = set()
        self.fail_listing = False
        self.interaction_calls: List[str] = []
        self.list_calls: List = []

    async def list_entities(self, active_since=None) -> List[str]:
        self.list_calls.append(active_since)
        if self.fail_listing:
            raise UpstreamUnavailable("gateway down", status_code=503)
        return list(self.entities)

    async def get_account(self, entity_id: str):
        if entity_id in self.failing_entities:
            raise UpstreamUnavailable(f"account {entity_id} unavailable")
        return self.accounts.get(entity_id, {"id": entity_id, "name": f"Account {entity_id}"})

    async def get_interactions(
        self,
        entity_id: str,
        source_types: Optional[Sequence[str]] = None,
        limit: int = 30,
    ) -> List[InteractionRecord]:
        self.interaction_calls.append(entity_id)
        if entity_id in self.failing_entities:
            raise RuntimeError(f"boom while reading {entity_id}")
        records = self.records.get(entity_id, [])
        if source_types:
            records = [r for r in records if r.type in source_types]
        return records[:limit]

    async def list_users(self) -> List[UserProfile]:
        return list(self.users)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def record():
    """Factory for interaction records."""
    return make_record


@pytest.fixture
def store() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def cache(store) -> DerivationCache:
    return DerivationCache(store)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def make_engine():
    """Mock SynthesisEngine; tests script complete / complete_json."""
    engine = MagicMock()
    engine.complete = AsyncMock(return_value="**Summary**\n- All good")
    engine.complete_json = AsyncMock(return_value=[])
    engine.close = AsyncMock()
    return engine


@pytest.fixture
def engine():
    return make_engine()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ANTHROPIC_API_KEY=None,
        WARMUP_BATCH_SIZE=3,
        REFRESH_INTERVAL_SECONDS=1800,
        DAILY_WARM_HOUR=6,
        DAILY_WARM_MINUTE=0,
        DAILY_RECENCY_DAYS=7,
    )


@pytest.fixture
def intel(provider, engine, store, settings) -> AccountIntelligence:
    return AccountIntelligence(provider, engine, store, settings)


@pytest_asyncio.fixture
async def make_intel(provider, settings):
    """
    Factory for extra runtimes over the same provider, each with its own
    store and engine, for comparing two ways of running the same work.
    """
    built = []

    def make() -> AccountIntelligence:
        runtime = AccountIntelligence(provider, make_engine(), FakeCacheStore(), settings)
        built.append(runtime)
        return runtime

    yield make
    for runtime in built:
        await runtime.close()


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (need Redis)"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
