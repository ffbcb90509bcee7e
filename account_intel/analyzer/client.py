"""
Claude Synthesis Engine

Async client for Claude used by every derived-artifact producer:
- Explicit request timeout
- Retry with exponential backoff on transient API errors
- Token accounting, so warmup cost is visible in the logs
- JSON-mode helper that rejects malformed output
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

import anthropic

from account_intel.analyzer.parser import parse_json_output
from account_intel.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class SynthesisEngine(Protocol):
    """Turns a bounded textual payload into text or structured JSON."""

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.3,
    ) -> str:
        ...

    async def complete_json(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.2,
    ) -> Any:
        ...


@dataclass
class SynthesisUsage:
    """Running totals across every Claude call of this process."""
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    # USD per million tokens
    INPUT_PRICE = 3.0
    OUTPUT_PRICE = 15.0

    def record(self, input_tokens: int, output_tokens: int) -> None:
        self.calls += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    @property
    def estimated_cost_usd(self) -> float:
        return (
            self.input_tokens * self.INPUT_PRICE
            + self.output_tokens * self.OUTPUT_PRICE
        ) / 1_000_000

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_tokens"] = self.input_tokens + self.output_tokens
        data["estimated_cost_usd"] = round(self.estimated_cost_usd, 4)
        return data


class ClaudeSynthesisEngine:
    """
    SynthesisEngine backed by the Anthropic API.

    Raises UpstreamUnavailable once retries are exhausted; callers decide
    whether that means "return nothing" or "keep the previous result".
    """

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.model = model or self.DEFAULT_MODEL
        self.max_retries = max_retries
        # Retries are handled here so they are logged with context
        self.async_client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        self.usage = SynthesisUsage()

    async def _send(self, request: Dict[str, Any]) -> str:
        response = await self.async_client.messages.create(**request)
        self.usage.record(response.usage.input_tokens, response.usage.output_tokens)
        logger.info(
            f"Claude call #{self.usage.calls}: {response.usage.input_tokens} in, "
            f"{response.usage.output_tokens} out"
        )
        return "".join(getattr(block, "text", "") for block in response.content)

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.3,
    ) -> str:
        """
        Send one prompt and return the text of the reply.

        Raises:
            UpstreamUnavailable: API rejected the request, or stayed
                unreachable through every retry
        """
        request = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system

        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._send(request)
            except anthropic.BadRequestError as e:
                # Payload problem; retrying will not help
                raise UpstreamUnavailable(f"Claude rejected request: {e}", status_code=400) from e
            except anthropic.APIError as e:
                if attempt == attempts:
                    raise UpstreamUnavailable(
                        f"Claude unavailable after {attempts} attempts: {e}"
                    ) from e
                backoff = 2 ** (attempt - 1)
                logger.warning(
                    f"Claude call failed (attempt {attempt}/{attempts}), "
                    f"retrying in {backoff}s: {e}"
                )
                await asyncio.sleep(backoff)

    async def complete_json(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.2,
    ) -> Any:
        """Complete and parse JSON; raises MalformedSynthesisOutput if it isn't."""
        return parse_json_output(await self.complete(prompt, system, max_tokens, temperature))

    async def close(self):
        logger.info(f"Claude usage this run: {self.usage.to_dict()}")
        await self.async_client.close()
