"""
Tests for the synthesis producers and their upstream clients.

These tests verify:
- Call briefs are permanent and only generated for calls with transcripts
- Summaries and health are cached with their TTLs, failures are not cached
- Analytics are built from cached briefs only
- Output parsing tolerates fences and prose, rejects garbage
- Claude and gateway clients retry transient failures
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from account_intel.analyzer.client import ClaudeSynthesisEngine
from account_intel.analyzer.parser import expect_list, expect_object, parse_json_output, strip_fences
from account_intel.cache.derivation import Outcome
from account_intel.cache.keys import hash_ids
from account_intel.collector.client import EMAIL, GatewayClient, RetryConfig, UserProfile
from account_intel.errors import MalformedSynthesisOutput, UpstreamUnavailable
from account_intel.synthesis.analytics import ANALYTICS_KINDS
from account_intel.synthesis.models import HealthRating


BRIEF = {
    "summary": "Walked through the security review",
    "key_points": ["SSO required"],
    "next_steps": ["Share SOC 2 report"],
    "sentiment": "positive",
}


# =============================================================================
# CALL BRIEFS
# =============================================================================

class TestCallBriefs:

    @pytest.mark.asyncio
    async def test_brief_is_stored_without_expiry(self, intel, store, engine, record):
        engine.complete_json.return_value = BRIEF

        brief = await intel.briefs.get_brief("001A", record("c1", title="Security review"))

        assert brief.summary == BRIEF["summary"]
        assert brief.title == "Security review"
        assert ("ai:call-brief:001A:c1", 0) in store.set_calls
        assert await intel.briefs.has_brief("001A", "c1")

    @pytest.mark.asyncio
    async def test_brief_served_from_cache(self, intel, engine, record):
        engine.complete_json.return_value = BRIEF
        call = record("c1")

        await intel.briefs.get_brief("001A", call)
        await intel.briefs.get_brief("001A", call)

        assert engine.complete_json.await_count == 1

    @pytest.mark.asyncio
    async def test_no_transcript_no_brief(self, intel, engine, record):
        assert await intel.briefs.get_brief("001A", record("c1", content="")) is None
        engine.complete_json.assert_not_called()
        assert not await intel.briefs.has_brief("001A", "c1")

    @pytest.mark.asyncio
    async def test_malformed_output_not_cached(self, intel, engine, record):
        engine.complete_json.return_value = ["not", "an", "object"]
        assert await intel.briefs.get_brief("001A", record("c1")) is None
        assert not await intel.briefs.has_brief("001A", "c1")

    @pytest.mark.asyncio
    async def test_outage_returns_none_but_warm_raises(self, intel, engine, record):
        engine.complete_json.side_effect = UpstreamUnavailable("claude down")

        assert await intel.briefs.get_brief("001A", record("c1")) is None
        with pytest.raises(UpstreamUnavailable):
            await intel.briefs.warm_brief("001A", record("c1"))
        assert not await intel.briefs.has_brief("001A", "c1")

    @pytest.mark.asyncio
    async def test_warm_brief_outcomes(self, intel, engine, record):
        engine.complete_json.return_value = BRIEF

        assert await intel.briefs.warm_brief("001A", record("c1")) == Outcome.GENERATED
        assert await intel.briefs.warm_brief("001A", record("c1")) == Outcome.CACHED
        assert await intel.briefs.warm_brief("001A", record("c2", content="")) == Outcome.EMPTY

    @pytest.mark.asyncio
    async def test_brief_calls_stops_at_outage(self, intel, engine, record):
        engine.complete_json.side_effect = [BRIEF, UpstreamUnavailable("claude down")]
        calls = [record("c1"), record("c2"), record("c3")]

        assert await intel.briefs.brief_calls("001A", calls) == 1
        assert engine.complete_json.await_count == 2
        assert not await intel.briefs.has_brief("001A", "c3")

    @pytest.mark.asyncio
    async def test_concurrent_requests_brief_once(self, intel, engine, record):
        async def slow_brief(*args, **kwargs):
            await asyncio.sleep(0.01)
            return BRIEF
        engine.complete_json.side_effect = slow_brief
        call = record("c1")

        briefs = await asyncio.gather(*(intel.briefs.get_brief("001A", call) for _ in range(3)))

        assert engine.complete_json.await_count == 1
        assert all(b.summary == BRIEF["summary"] for b in briefs)

    @pytest.mark.asyncio
    async def test_missing_calls_and_cached_briefs(self, intel, provider, engine, record):
        provider.records["001A"] = [record("c1"), record("c2"), record("e1", type=EMAIL)]
        engine.complete_json.return_value = BRIEF

        assert [r.id for r in await intel.briefs.missing_calls("001A")] == ["c1", "c2"]
        assert await intel.briefs.cached_briefs("001A") == []

        missing = await intel.briefs.missing_calls("001A")
        assert await intel.briefs.brief_calls("001A", missing) == 2
        assert await intel.briefs.brief_calls("001A", missing) == 0
        assert await intel.briefs.missing_calls("001A") == []
        assert len(await intel.briefs.cached_briefs("001A", limit=1)) == 1


# =============================================================================
# SUMMARIES
# =============================================================================

class TestSummaries:

    @pytest.mark.asyncio
    async def test_overview_cached_for_an_hour(self, intel, store, provider, engine, record):
        provider.records["001A"] = [record("c1")]

        first = await intel.summaries.overview("001A")
        second = await intel.summaries.overview("001A")

        assert first == second == "**Summary**\n- All good"
        assert engine.complete.await_count == 1
        assert ("ai:overview:001A", 3600) in store.set_calls

    @pytest.mark.asyncio
    async def test_detail_summaries(self, intel, provider, engine, record):
        provider.records["001A"] = [record("c1")]

        assert await intel.summaries.detail_summary("001A", "poc-status") is not None
        assert await intel.summaries.detail_summary("001A", "technical-details") is not None
        assert engine.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_detail_kind(self, intel):
        with pytest.raises(ValueError):
            await intel.summaries.detail_summary("001A", "pricing")

    @pytest.mark.asyncio
    async def test_upstream_failure_is_not_cached(self, intel, cache, provider, engine):
        provider.failing_entities = {"001A"}

        assert await intel.summaries.overview("001A") is None
        assert await cache.get("ai:overview:001A") is None
        engine.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_thread_summary_keyed_by_email_ids(self, intel, store, engine, record):
        emails = [
            record("m2", type=EMAIL, date="2024-05-02"),
            record("m1", type=EMAIL, date="2024-05-01"),
        ]

        await intel.summaries.thread_summary(emails)
        await intel.summaries.thread_summary(list(reversed(emails)))

        key = f"ai:thread-summary:{hash_ids(['m1', 'm2'])}"
        assert (key, 86400) in store.set_calls
        assert engine.complete.await_count == 1

        # A new reply is a different thread state
        await intel.summaries.thread_summary(emails + [record("m3", type=EMAIL)])
        assert engine.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_thread(self, intel, engine):
        assert await intel.summaries.thread_summary([]) is None
        engine.complete.assert_not_called()


# =============================================================================
# HEALTH
# =============================================================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_valid_rating(self, intel, provider, engine, record):
        provider.records["001A"] = [record("c1")]
        engine.complete_json.return_value = {
            "rating": "Yellow",
            "reason": "Champion left",
            "narrative": "Renewal at risk.",
        }

        health = await intel.health.get_health("001A")

        assert health.rating == HealthRating.YELLOW
        assert health.reason == "Champion left"
        assert health.entity_id == "001A"

    @pytest.mark.asyncio
    async def test_unknown_rating_not_cached(self, intel, cache, provider, engine, record):
        provider.records["001A"] = [record("c1")]
        engine.complete_json.return_value = {"rating": "purple", "reason": "?"}

        assert await intel.health.get_health("001A") is None
        assert await cache.get("ai:health:001A") is None

    @pytest.mark.asyncio
    async def test_no_activity_no_rating(self, intel, engine):
        assert await intel.health.get_health("001A") is None
        engine.complete_json.assert_not_called()


# =============================================================================
# ANALYTICS
# =============================================================================

class TestAnalytics:

    @pytest.fixture
    def user(self, provider, record):
        provider.records["001A"] = [record("c1"), record("c2")]
        provider.records["001B"] = [record("c3")]
        return UserProfile(id="u1", name="Sam Chen", account_ids=["001A", "001B"])

    @pytest.mark.asyncio
    async def test_no_briefs_no_report(self, intel, engine, user):
        assert await intel.analytics.get_report("insights", user) is None
        engine.complete.assert_not_called()
        engine.complete_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_report_built_from_cached_briefs(self, intel, engine, user):
        engine.complete_json.return_value = BRIEF
        await intel.briefs.brief_calls("001A", await intel.briefs.list_calls("001A"))

        report = await intel.analytics.get_report("call-coaching", user)

        assert report.kind == "call-coaching"
        assert report.account_ids == ["001A"]
        assert report.briefs_used == 2
        # 001B's call was never briefed and analytics must not brief it
        assert not await intel.briefs.has_brief("001B", "c3")

    @pytest.mark.asyncio
    async def test_unknown_kind(self, intel, user):
        with pytest.raises(ValueError):
            await intel.analytics.get_report("forecast", user)

    @pytest.mark.asyncio
    async def test_warm_user_refresh(self, intel, cache, engine, user):
        engine.complete_json.return_value = BRIEF
        await intel.briefs.brief_calls("001A", await intel.briefs.list_calls("001A"))

        assert await intel.analytics.warm_user(user) == len(ANALYTICS_KINDS)
        # Already cached reports are not counted again
        assert await intel.analytics.warm_user(user) == 0
        assert engine.complete.await_count == len(ANALYTICS_KINDS)

        assert await intel.analytics.warm_user(user, refresh=True) == len(ANALYTICS_KINDS)
        assert engine.complete.await_count == 2 * len(ANALYTICS_KINDS)


# =============================================================================
# NO SYNTHESIS ENGINE
# =============================================================================

class TestWithoutEngine:

    @pytest.fixture
    def bare(self, intel):
        for service in (intel.briefs, intel.summaries, intel.health, intel.analytics,
                        intel.action_items, intel.contact_insights):
            service.engine = None
        return intel

    @pytest.mark.asyncio
    async def test_everything_degrades_to_empty(self, bare, store, provider, record):
        provider.records["001A"] = [record("c1")]
        user = UserProfile(id="u1", name="Sam", account_ids=["001A"])

        assert await bare.briefs.get_brief("001A", record("c1")) is None
        assert await bare.summaries.overview("001A") is None
        assert await bare.health.get_health("001A") is None
        assert await bare.analytics.get_report("insights", user) is None
        assert await bare.action_items.extract("001A") == []
        assert store.data == {}


# =============================================================================
# OUTPUT PARSING
# =============================================================================

class TestOutputParsing:

    def test_plain_json(self):
        assert parse_json_output('[{"title": "x"}]') == [{"title": "x"}]

    def test_fenced_json(self):
        raw = '```json\n{"rating": "green"}\n```'
        assert strip_fences(raw) == '{"rating": "green"}'
        assert parse_json_output(raw) == {"rating": "green"}

    def test_prose_around_payload(self):
        raw = 'Here are the items:\n[{"title": "Send deck"}]\nLet me know!'
        assert parse_json_output(raw) == [{"title": "Send deck"}]

    @pytest.mark.parametrize("raw", ["", "   ", "no json here", "[{broken"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedSynthesisOutput):
            parse_json_output(raw)

    def test_shape_checks(self):
        assert expect_list([{"a": 1}, "junk", 3]) == [{"a": 1}]
        with pytest.raises(MalformedSynthesisOutput):
            expect_list({"a": 1})
        with pytest.raises(MalformedSynthesisOutput):
            expect_object([])


# =============================================================================
# CLAUDE ENGINE
# =============================================================================

def _response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=100, output_tokens=20),
    )


def _anthropic_client(*effects):
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=list(effects))
    client.close = AsyncMock()
    return client


REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class TestClaudeSynthesisEngine:

    @pytest.mark.asyncio
    async def test_complete_json(self):
        client = _anthropic_client(_response('```json\n{"rating": "red"}\n```'))
        engine = ClaudeSynthesisEngine(api_key="test", client=client)

        assert await engine.complete_json("prompt", system="sys") == {"rating": "red"}

        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert engine.usage.to_dict()["total_tokens"] == 120
        assert engine.usage.calls == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        client = _anthropic_client(
            anthropic.APIConnectionError(request=REQUEST),
            _response("ok"),
        )
        engine = ClaudeSynthesisEngine(api_key="test", client=client)

        with patch("account_intel.analyzer.client.asyncio.sleep", new=AsyncMock()):
            assert await engine.complete("prompt") == "ok"

        assert client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        client = _anthropic_client(*[anthropic.APIConnectionError(request=REQUEST)] * 3)
        engine = ClaudeSynthesisEngine(api_key="test", client=client, max_retries=2)

        with patch("account_intel.analyzer.client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(UpstreamUnavailable):
                await engine.complete("prompt")

        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        error = anthropic.BadRequestError(
            "bad request",
            response=httpx.Response(400, request=REQUEST),
            body=None,
        )
        client = _anthropic_client(error)
        engine = ClaudeSynthesisEngine(api_key="test", client=client)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await engine.complete("prompt")

        assert exc_info.value.status_code == 400
        assert client.messages.create.await_count == 1


# =============================================================================
# SOURCE GATEWAY
# =============================================================================

def _gateway(handler) -> GatewayClient:
    return GatewayClient(
        base_url="https://gateway.test",
        api_key="secret",
        retry_config=RetryConfig(max_retries=2, initial_delay=0),
        transport=httpx.MockTransport(handler),
    )


class TestGatewayClient:

    @pytest.mark.asyncio
    async def test_interactions_parsed(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{
                "id": "c1",
                "type": "call",
                "title": "Kickoff",
                "date": "2024-05-01",
                "content": "Transcript",
                "participants": ["Alex"],
            }])

        client = _gateway(handler)
        records = await client.get_interactions("001A", ["call"], limit=5)
        await client.close()

        assert records[0].id == "c1"
        assert records[0].title == "Kickoff"
        assert seen[0].url.path == "/accounts/001A/interactions"
        assert seen[0].url.params["source_types"] == "call"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_not_found_is_none(self):
        client = _gateway(lambda request: httpx.Response(404))
        assert await client.get_account("missing") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_retried_then_raised(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(500)

        client = _gateway(handler)
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.list_entities()
        await client.close()

        assert exc_info.value.status_code == 500
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(403)

        client = _gateway(handler)
        with pytest.raises(UpstreamUnavailable):
            await client.list_users()
        await client.close()

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_closed_client_refuses(self):
        client = _gateway(lambda request: httpx.Response(200, json=[]))
        await client.close()
        with pytest.raises(UpstreamUnavailable):
            await client.list_entities()
