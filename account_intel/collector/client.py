"""
Source Gateway Client

Async HTTP client for the CRM / call-recording gateway with:
- Connection pooling
- Automatic retry with exponential backoff
- Explicit per-request timeout
- Typed interaction records
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from account_intel.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


CALL = "call"
EMAIL = "email"


@dataclass
class InteractionRecord:
    """One interaction pulled from the CRM or call platform."""
    id: str
    type: str
    title: str
    date: str
    content: str = ""
    participants: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "date": self.date,
            "content": self.content,
            "participants": list(self.participants),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "InteractionRecord":
        return cls(
            id=str(data["id"]),
            type=str(data.get("type") or data.get("sourceType") or ""),
            title=str(data.get("title") or ""),
            date=str(data.get("date") or ""),
            content=str(data.get("content") or data.get("preview") or ""),
            participants=[str(p) for p in data.get("participants") or []],
        )


@dataclass
class UserProfile:
    """A user for whom cross-account analytics are computed."""
    id: str
    name: str
    account_ids: List[str] = field(default_factory=list)


class SourceDataProvider(Protocol):
    """Read-only view of upstream source data."""

    async def list_entities(self, active_since: Optional[datetime] = None) -> List[str]:
        ...

    async def get_account(self, entity_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_interactions(
        self,
        entity_id: str,
        source_types: Optional[Sequence[str]] = None,
        limit: int = 30,
    ) -> List[InteractionRecord]:
        ...

    async def list_users(self) -> List[UserProfile]:
        ...


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


class GatewayClient:
    """
    Async client for the source data gateway.

    Usage:
        client = GatewayClient(base_url="https://gateway.internal", api_key="...")
        records = await client.get_interactions("001A", source_types=["call"])
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        max_connections: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    async def close(self):
        """Close the underlying HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def _make_request(self, path: str, params: Optional[Dict] = None) -> Any:
        """Make a single GET request."""
        logger.debug(f"GET {path} {params or ''}")

        response = await self._client.get(path, params=params)

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            raise UpstreamUnavailable(
                f"Gateway request failed: {response.status_code}",
                status_code=response.status_code,
            )

        return response.json()

    async def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        """GET with retry on transient failures."""
        if self._closed:
            raise UpstreamUnavailable("Client is closed")

        last_exception = None
        delay = self.retry_config.initial_delay

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                return await self._make_request(path, params)

            except UpstreamUnavailable as e:
                last_exception = e
                # Don't retry client errors (4xx except 429)
                if e.status_code and e.status_code not in self.retry_config.retryable_status_codes:
                    raise

            except httpx.TimeoutException as e:
                last_exception = UpstreamUnavailable(f"Request timed out: {e}")

            except httpx.HTTPError as e:
                last_exception = UpstreamUnavailable(f"HTTP error: {e}")

            if attempt < self.retry_config.max_retries:
                logger.warning(
                    f"Gateway call {path} failed (attempt {attempt + 1}/"
                    f"{self.retry_config.max_retries + 1}): {last_exception}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay = min(
                    delay * self.retry_config.exponential_base,
                    self.retry_config.max_delay
                )

        raise last_exception

    # =========================================================================
    # SourceDataProvider
    # =========================================================================

    async def list_entities(self, active_since: Optional[datetime] = None) -> List[str]:
        """Ids of all known accounts, optionally only recently active ones."""
        params = {}
        if active_since:
            params["active_since"] = active_since.isoformat()
        data = await self._get("/accounts", params) or []
        return [str(a["id"]) for a in data if a.get("id")]

    async def get_account(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(f"/accounts/{entity_id}")

    async def get_interactions(
        self,
        entity_id: str,
        source_types: Optional[Sequence[str]] = None,
        limit: int = 30,
    ) -> List[InteractionRecord]:
        """Interactions for an account, newest first."""
        params = {"limit": limit}
        if source_types:
            params["source_types"] = ",".join(source_types)
        data = await self._get(f"/accounts/{entity_id}/interactions", params) or []
        return [InteractionRecord.from_dict(item) for item in data[:limit]]

    async def list_users(self) -> List[UserProfile]:
        data = await self._get("/users") or []
        return [
            UserProfile(
                id=str(u["id"]),
                name=str(u.get("name") or ""),
                account_ids=[str(a) for a in u.get("account_ids") or []],
            )
            for u in data
            if u.get("id")
        ]
