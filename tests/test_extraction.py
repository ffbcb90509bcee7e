"""
Tests for incremental extraction.

These tests verify:
- Only unanalyzed records are sent to synthesis
- Merge by identity (no duplicates, no loss)
- The analyzed set only grows
- Failures leave stored state untouched
- Per-type candidate caps
- Per-entity serialization of concurrent runs
- Action item completion state and the cross-account view
"""

import asyncio

import pytest

from account_intel.collector.client import EMAIL, UserProfile
from account_intel.errors import MalformedSynthesisOutput, UpstreamUnavailable
from account_intel.synthesis.action_items import ActionItemService, owner_matches
from account_intel.synthesis.contact_insights import ContactInsightService
from account_intel.synthesis.models import ItemStatus, action_item_id


def item(action, record_id, owner="Sam Chen", source=None):
    data = {"action": action, "recordId": record_id, "date": "2024-05-01", "owner": owner}
    if source:
        data["source"] = source
    return data


@pytest.fixture
def service(cache, provider, engine) -> ActionItemService:
    return ActionItemService(cache, provider, engine)


@pytest.fixture
def seeded(provider, record):
    provider.records["001A"] = [
        record("c2", title="Security review", date="2024-05-02"),
        record("c1", title="Kickoff", date="2024-05-01"),
    ]
    return provider


# =============================================================================
# INCREMENTAL ROUNDS
# =============================================================================

class TestIncrementalExtraction:

    @pytest.mark.asyncio
    async def test_first_round_extracts_and_marks_analyzed(self, service, seeded, engine):
        engine.complete_json.return_value = [
            item("Send SOC2 report", "c2"),
            item("Share pricing sheet", "c1"),
        ]

        items = await service.extract("001A")

        assert [i.action for i in items] == ["Send SOC2 report", "Share pricing sheet"]
        assert {i.record_id for i in items} == {"c1", "c2"}
        assert items[0].source == "Security review"
        state = await service.load_state("001A")
        assert state.analyzed == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_no_new_records_means_no_synthesis(self, service, seeded, engine):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        first = await service.extract("001A")

        second = await service.extract("001A")

        assert engine.complete_json.await_count == 1
        assert [i.to_dict() for i in second] == [i.to_dict() for i in first]

    @pytest.mark.asyncio
    async def test_only_new_records_are_sent(self, service, seeded, engine, record):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        await service.extract("001A")

        seeded.records["001A"].insert(0, record("c3", title="POC check-in", date="2024-05-03"))
        engine.complete_json.return_value = [item("Extend POC licence", "c3")]
        items = await service.extract("001A")

        prompt = engine.complete_json.await_args.args[0]
        assert "recordId: c3" in prompt
        assert "recordId: c1" not in prompt
        assert "recordId: c2" not in prompt
        assert {i.action for i in items} == {"Send SOC2 report", "Extend POC licence"}

    @pytest.mark.asyncio
    async def test_reextracted_item_is_not_duplicated(self, service, seeded, engine, cache):
        engine.complete_json.return_value = [
            item("Send SOC2 report", "c2"),
            item("Send SOC2 report", "c2"),
        ]
        await service.extract("001A")

        # Forget the analyzed records so the same output is merged again
        state = await service.load_state("001A")
        state.analyzed = set()
        await cache.set(service.key("001A"), state.to_dict(), 0)
        items = await service.extract("001A")

        assert len([i for i in items if i.action == "Send SOC2 report"]) == 1

    @pytest.mark.asyncio
    async def test_merge_keeps_items_not_reextracted(self, service, seeded, engine, record):
        engine.complete_json.return_value = [item("Share pricing sheet", "c1")]
        await service.extract("001A")

        seeded.records["001A"].insert(0, record("c3"))
        engine.complete_json.return_value = []
        items = await service.extract("001A")

        assert [i.action for i in items] == ["Share pricing sheet"]

    @pytest.mark.asyncio
    async def test_analyzed_set_only_grows(self, service, seeded, engine, record):
        engine.complete_json.return_value = []
        await service.extract("001A")
        before = (await service.load_state("001A")).analyzed

        seeded.records["001A"].insert(0, record("c3"))
        engine.complete_json.side_effect = MalformedSynthesisOutput("garbage")
        await service.extract("001A")
        after_failure = (await service.load_state("001A")).analyzed

        engine.complete_json.side_effect = None
        await service.extract("001A")
        after_success = (await service.load_state("001A")).analyzed

        assert before <= after_failure <= after_success
        assert "c3" in after_success


# =============================================================================
# FAILURES
# =============================================================================

class TestExtractionFailures:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        MalformedSynthesisOutput("not json"),
        UpstreamUnavailable("claude down"),
    ])
    async def test_failure_keeps_previous_state(self, service, seeded, engine, record, store, error):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        await service.extract("001A")
        stored = dict(store.data)

        seeded.records["001A"].insert(0, record("c3"))
        engine.complete_json.side_effect = error
        items = await service.extract("001A")

        assert [i.action for i in items] == ["Send SOC2 report"]
        assert store.data == stored
        assert "c3" not in (await service.load_state("001A")).analyzed

    @pytest.mark.asyncio
    async def test_failed_records_are_retried(self, service, seeded, engine):
        engine.complete_json.side_effect = UpstreamUnavailable("claude down")
        assert await service.extract("001A") == []

        engine.complete_json.side_effect = None
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        items = await service.extract("001A")

        assert [i.action for i in items] == ["Send SOC2 report"]

    @pytest.mark.asyncio
    async def test_source_outage_returns_existing(self, service, seeded, engine, provider):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        await service.extract("001A")

        async def down(*args, **kwargs):
            raise UpstreamUnavailable("gateway down")
        provider.get_interactions = down

        items = await service.extract("001A")
        assert [i.action for i in items] == ["Send SOC2 report"]

    @pytest.mark.asyncio
    async def test_without_engine_serves_stored_items(self, cache, seeded):
        service = ActionItemService(cache, seeded, engine=None)
        assert await service.extract("001A") == []


# =============================================================================
# CANDIDATES AND PROVENANCE
# =============================================================================

class TestCandidatesAndProvenance:

    @pytest.mark.asyncio
    async def test_candidates_capped_per_type(self, service, provider, engine, record):
        provider.records["001A"] = (
            [record(f"c{i}") for i in range(15)]
            + [record(f"e{i}", type=EMAIL) for i in range(12)]
        )

        await service.extract("001A")

        analyzed = (await service.load_state("001A")).analyzed
        assert len(analyzed) == 20
        assert {f"c{i}" for i in range(10)} <= analyzed
        assert "c10" not in analyzed

    @pytest.mark.asyncio
    async def test_content_is_truncated(self, service, provider, engine, record):
        provider.records["001A"] = [record("c1", content="x" * 50000)]

        await service.extract("001A")

        prompt = engine.complete_json.await_args.args[0]
        assert "x" * service.MAX_CONTENT_CHARS in prompt
        assert "x" * (service.MAX_CONTENT_CHARS + 1) not in prompt

    @pytest.mark.asyncio
    async def test_records_without_content_marked_without_synthesis(self, service, provider, engine, record):
        provider.records["001A"] = [record("c1", content=""), record("c2", content="")]

        assert await service.extract("001A") == []

        engine.complete_json.assert_not_awaited()
        assert (await service.load_state("001A")).analyzed == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_title_fallback_and_untraceable_items(self, service, seeded, engine):
        engine.complete_json.return_value = [
            {"action": "Book follow-up", "source": "kickoff", "owner": None},
            {"action": "Mystery task", "source": "Unknown meeting"},
            {"action": "", "recordId": "c1"},
        ]

        items = await service.extract("001A")

        assert [i.action for i in items] == ["Book follow-up"]
        assert items[0].record_id == "c1"
        assert items[0].owner is None

    @pytest.mark.asyncio
    async def test_non_list_output_is_malformed(self, service, seeded, engine, store):
        engine.complete_json.return_value = {"action": "not a list"}
        assert await service.extract("001A") == []
        assert store.data == {}


# =============================================================================
# CONCURRENCY
# =============================================================================

class TestConcurrentExtraction:

    @pytest.mark.asyncio
    async def test_concurrent_runs_synthesize_once(self, service, seeded, engine):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]

        first, second = await asyncio.gather(
            service.extract("001A"),
            service.extract("001A"),
        )

        assert engine.complete_json.await_count == 1
        assert [i.id for i in first] == [i.id for i in second]

    @pytest.mark.asyncio
    async def test_concurrent_matches_sequential(self, cache, provider, engine, record):
        provider.records["001A"] = [record("c1", title="Kickoff")]
        provider.records["001B"] = [record("c1", title="Kickoff")]
        engine.complete_json.return_value = [item("Share pricing sheet", "c1")]
        service = ActionItemService(cache, provider, engine)

        await asyncio.gather(*(service.extract("001A") for _ in range(3)))
        for _ in range(3):
            await service.extract("001B")

        a = await service.load_state("001A")
        b = await service.load_state("001B")
        assert a.analyzed == b.analyzed
        assert [i["action"] for i in a.items.values()] == [i["action"] for i in b.items.values()]


# =============================================================================
# ACTION ITEM IDENTITY AND STATUS
# =============================================================================

class TestActionItems:

    def test_identity_is_pure_function_of_fields(self):
        args = ("001A", "Send SOC2 report", "Kickoff", "2024-05-01", "call", "c1")
        assert action_item_id(*args) == action_item_id(*args)
        assert action_item_id(*args) != action_item_id("001B", *args[1:])
        assert action_item_id(*args) != action_item_id(*args[:5], "c2")

    @pytest.mark.parametrize("owner,name,expected", [
        ("Sam Chen", "Sam Chen", True),
        ("Sam", "Sam Chen", True),
        ("sam chen (SE)", "Sam Chen", True),
        ("Chen", "Sam Chen", True),
        ("Alex Rivera", "Sam Chen", False),
        (None, "Sam Chen", False),
        ("Jo", "Sam Chen", False),
    ])
    def test_owner_matches(self, owner, name, expected):
        assert owner_matches(owner, name) is expected

    @pytest.mark.asyncio
    async def test_completion_round_trip(self, service, seeded, engine):
        engine.complete_json.return_value = [item("Send SOC2 report", "c2")]
        items = await service.extract("001A")
        item_id = items[0].id

        await service.complete("u1", item_id)
        assert (await service.get_with_status("001A", "u1"))[0].status == ItemStatus.DONE
        assert (await service.get_with_status("001A", "u2"))[0].status == ItemStatus.OPEN

        await service.uncomplete("u1", item_id)
        assert (await service.get_with_status("001A", "u1"))[0].status == ItemStatus.OPEN

    @pytest.mark.asyncio
    async def test_completions_persist_without_expiry(self, service, store):
        await service.complete("u1", "abc")
        assert ("actions:completed:u1", 0) in store.set_calls

    @pytest.mark.asyncio
    async def test_my_action_items_filters_by_owner(self, intel, provider, engine, store, record):
        provider.records["001A"] = [record("c1", title="Kickoff")]
        provider.records["001B"] = [record("c9", title="QBR")]

        async def by_prompt(prompt, **kwargs):
            if "recordId: c1" in prompt:
                return [item("Share pricing sheet", "c1", owner="Sam")]
            return [item("Draft QBR deck", "c9", owner="Alex Rivera")]
        engine.complete_json.side_effect = by_prompt

        user = UserProfile(id="u1", name="Sam Chen", account_ids=["001A", "001B"])
        mine = await intel.action_items.my_action_items(user)

        assert [i.action for i in mine] == ["Share pricing sheet"]
        assert ("home:my-action-items:u1", 300) in store.set_calls

    @pytest.mark.asyncio
    async def test_completing_refreshes_my_action_items(self, intel, provider, engine, record):
        provider.records["001A"] = [record("c1", title="Kickoff")]
        engine.complete_json.return_value = [item("Share pricing sheet", "c1", owner="Sam")]
        user = UserProfile(id="u1", name="Sam Chen", account_ids=["001A"])

        mine = await intel.action_items.my_action_items(user)
        assert mine[0].status == ItemStatus.OPEN

        await intel.complete_action_item("u1", mine[0].id)
        mine = await intel.action_items.my_action_items(user)
        assert mine[0].status == ItemStatus.DONE


# =============================================================================
# CONTACT INSIGHTS
# =============================================================================

class TestContactInsights:

    @pytest.mark.asyncio
    async def test_newer_mention_replaces_slot(self, cache, provider, engine, record):
        service = ContactInsightService(cache, provider, engine)
        provider.records["001A"] = [record("c1", date="2024-05-01")]
        engine.complete_json.return_value = [
            {"contact": "Dana Lee", "attribute": "Role", "value": "Platform lead", "recordId": "c1"},
        ]
        await service.extract("001A")

        provider.records["001A"].insert(0, record("c2", date="2024-06-01"))
        engine.complete_json.return_value = [
            {"contact": "dana lee", "attribute": "role", "value": "VP Engineering", "recordId": "c2"},
            {"contact": "Dana Lee", "attribute": "concerns", "value": "SSO support", "recordId": "c2"},
        ]
        insights = await service.extract("001A")

        assert len(insights) == 2
        role = next(i for i in insights if i.attribute == "role")
        assert role.value == "VP Engineering"
        assert role.mentioned_at == "2024-06-01"
        assert role.record_id == "c2"

    @pytest.mark.asyncio
    async def test_incomplete_insights_dropped(self, cache, provider, engine, record):
        service = ContactInsightService(cache, provider, engine)
        provider.records["001A"] = [record("c1")]
        engine.complete_json.return_value = [
            {"contact": "Dana Lee", "attribute": "role", "recordId": "c1"},
        ]
        assert await service.extract("001A") == []
