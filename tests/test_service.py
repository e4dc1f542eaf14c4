"""Tests for the engagement service facade.

These tests drive the full stack (cache, ledger, aggregator, recorder) over
the in-memory SQLite gateway, with both the single-transaction and the
two-step reaction write.
"""

import asyncio
import random

import pytest

from engagementdb.cache import CacheState
from engagementdb.config import GatewayBackend
from engagementdb.database import SQLiteGateway
from engagementdb.errors import GatewayError, MutationPendingError
from engagementdb.metrics import registry
from engagementdb.models import ReactionType, Target
from engagementdb.result import GatewayFailure, Ok
from engagementdb.service import EngagementService, create_gateway

LIKE = ReactionType.LIKE
LOVE = ReactionType.LOVE


@pytest.fixture(params=[True, False], ids=["atomic", "two-step"])
def any_service(request, gateway) -> EngagementService:
    """Service with each reaction write path."""
    return EngagementService(gateway=gateway, atomic_writes=request.param)


async def counts_of(service: EngagementService, target: Target) -> dict[ReactionType, int]:
    return (await service.aggregator.get_counts(target.target_type, target.target_id)).counts


# =============================================================================
# Reaction Toggle Tests
# =============================================================================


@pytest.mark.asyncio
async def test_like_love_love_sequence(any_service, post_42):
    """LIKE, LOVE, LOVE from one user on post 42."""
    held = await any_service.toggle_reaction("u1", "post", 42, LIKE)
    assert held == LIKE
    counts = await counts_of(any_service, post_42)
    assert counts[LIKE] == 1

    held = await any_service.toggle_reaction("u1", "post", 42, LOVE)
    assert held == LOVE
    counts = await counts_of(any_service, post_42)
    assert (counts[LIKE], counts[LOVE]) == (0, 1)

    held = await any_service.toggle_reaction("u1", "post", 42, LOVE)
    assert held is None
    counts = await counts_of(any_service, post_42)
    assert counts[LOVE] == 0
    assert await any_service.ledger.get_reaction("u1", "post", 42) is None


@pytest.mark.asyncio
async def test_counters_match_ledger_after_random_toggles(any_service, post_42):
    """Counters equal the number of ledger rows per type after any toggle sequence."""
    rng = random.Random(42)
    users = [f"u{i}" for i in range(6)]
    types = list(ReactionType)

    for _ in range(60):
        await any_service.toggle_reaction(rng.choice(users), "post", 42, rng.choice(types))

    reactions = await any_service.ledger.get_all_reactions("post", 42)
    expected = {reaction_type: 0 for reaction_type in ReactionType}
    for reaction in reactions:
        expected[reaction.reaction_type] += 1

    assert await counts_of(any_service, post_42) == expected
    assert len({r.user_id for r in reactions}) == len(reactions)


@pytest.mark.asyncio
async def test_toggle_updates_users_cache(service, post_42):
    await service.toggle_reaction("u1", "post", 42, LIKE)

    cache = service.cache_for("u1")
    assert cache.state(post_42) == CacheState.SETTLED
    cached = cache.get(post_42)
    assert cached.my_reaction == LIKE
    assert cached.counts[LIKE] == 1


@pytest.mark.asyncio
async def test_toggle_accepts_string_reaction(service):
    assert await service.toggle_reaction("u1", "comment", 7, "laugh") == ReactionType.LAUGH


@pytest.mark.asyncio
async def test_failed_write_rolls_back_and_raises(service, gateway, post_42, mocker):
    await service.get_reaction_summary("u1", "post", 42)
    mocker.patch.object(
        gateway, "apply_reaction", return_value=GatewayFailure("HTTP 503", transient=True)
    )
    labels = {"target_type": "post", "outcome": "failed"}
    before = registry.get_sample_value("reaction_toggles_total", labels) or 0

    with pytest.raises(GatewayError, match="503"):
        await service.toggle_reaction("u1", "post", 42, LIKE)

    cached = service.cache_for("u1").get(post_42)
    assert cached.my_reaction is None
    assert cached.counts[LIKE] == 0
    assert service.cache_for("u1").state(post_42) == CacheState.SETTLED
    assert registry.get_sample_value("reaction_toggles_total", labels) == before + 1


@pytest.mark.asyncio
async def test_two_step_write_uses_ledger_then_counters(gateway, post_42, mocker):
    service = EngagementService(gateway=gateway, atomic_writes=False)
    apply = mocker.spy(gateway, "apply_reaction")
    adjust = mocker.spy(gateway, "adjust_reaction_count")

    await service.toggle_reaction("u1", "post", 42, LIKE)

    assert apply.call_count == 0
    assert adjust.call_count == 1


@pytest.mark.asyncio
async def test_concurrent_toggle_on_same_target_rejected(service, gateway, post_42, mocker):
    release = asyncio.Event()
    original = gateway.apply_reaction

    async def slow_apply(*args, **kwargs):
        await release.wait()
        return await original(*args, **kwargs)

    mocker.patch.object(gateway, "apply_reaction", side_effect=slow_apply)

    first = asyncio.create_task(service.toggle_reaction("u1", "post", 42, LIKE))
    await asyncio.sleep(0)

    with pytest.raises(MutationPendingError):
        await service.toggle_reaction("u1", "post", 42, LOVE)

    release.set()
    assert await first == LIKE
    assert await service.ledger.get_reaction("u1", "post", 42) == LIKE


@pytest.mark.asyncio
async def test_cancelled_toggle_rolls_back_and_allows_retry(service, gateway, post_42, mocker):
    release = asyncio.Event()
    original = gateway.apply_reaction
    calls = []

    async def stalled_first_apply(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            await release.wait()
        return await original(*args, **kwargs)

    mocker.patch.object(gateway, "apply_reaction", side_effect=stalled_first_apply)
    pending_before = registry.get_sample_value("pending_mutations")

    task = asyncio.create_task(service.toggle_reaction("u1", "post", 42, LIKE))
    await asyncio.sleep(0)
    cache = service.cache_for("u1")
    assert cache.state(post_42) == CacheState.PENDING

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert cache.state(post_42) == CacheState.ROLLED_BACK
    assert cache.get(post_42).my_reaction is None
    assert cache.get(post_42).counts[LIKE] == 0
    assert registry.get_sample_value("pending_mutations") == pending_before

    assert await service.toggle_reaction("u1", "post", 42, LIKE) == LIKE
    assert cache.state(post_42) == CacheState.SETTLED


@pytest.mark.asyncio
async def test_uncached_toggle_predicts_from_server_state(service, gateway, post_42, mocker):
    """A toggle on an uncached target starts from what the user already holds."""
    await gateway.apply_reaction("u1", post_42, LIKE)
    release = asyncio.Event()
    original = gateway.apply_reaction

    async def slow_apply(*args, **kwargs):
        await release.wait()
        return await original(*args, **kwargs)

    mocker.patch.object(gateway, "apply_reaction", side_effect=slow_apply)

    task = asyncio.create_task(service.toggle_reaction("u1", "post", 42, LIKE))
    await asyncio.sleep(0)

    predicted = service.cache_for("u1").get(post_42)
    assert predicted.my_reaction is None
    assert predicted.counts[LIKE] == 0

    release.set()
    assert await task is None


@pytest.mark.asyncio
async def test_uncached_toggle_proceeds_when_priming_read_fails(service, post_42, mocker):
    original = service.aggregator.get_summaries
    calls = []

    async def flaky_summaries(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise GatewayError("HTTP 503")
        return await original(*args, **kwargs)

    mocker.patch.object(service.aggregator, "get_summaries", side_effect=flaky_summaries)

    assert await service.toggle_reaction("u1", "post", 42, LIKE) == LIKE
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_other_users_cache_refreshes_on_next_read(service, post_42):
    await service.get_reaction_summary("u2", "post", 42)
    await service.toggle_reaction("u1", "post", 42, LIKE)

    service.cache_for("u2").invalidate(post_42)
    summary = await service.get_reaction_summary("u2", "post", 42)

    assert summary.counts[LIKE] == 1
    assert summary.my_reaction is None


# =============================================================================
# Summary Read Tests
# =============================================================================


@pytest.mark.asyncio
async def test_summaries_served_from_cache(service, gateway, mocker):
    targets = [Target.of("post", i) for i in range(3)]
    await service.get_reaction_summaries("u1", targets)
    spy = mocker.spy(gateway, "fetch_reaction_counts")

    again = await service.get_reaction_summaries("u1", targets)

    assert spy.call_count == 0
    assert list(again) == targets


@pytest.mark.asyncio
async def test_summaries_fetch_only_misses(service, gateway, mocker):
    cached, missing = Target.of("post", 1), Target.of("post", 2)
    await service.get_reaction_summaries("u1", [cached])
    spy = mocker.spy(gateway, "fetch_reaction_counts")

    await service.get_reaction_summaries("u1", [cached, missing])

    assert spy.call_count == 1
    assert spy.call_args.args[0] == [missing]


@pytest.mark.asyncio
async def test_summaries_include_reactor_preview(service, gateway):
    await gateway.upsert_profile("u1", "Ada")
    await service.toggle_reaction("u1", "post", 42, LIKE)
    await service.toggle_reaction("u2", "post", 42, LOVE)

    summary = await service.get_reaction_summary("u3", "post", 42)

    assert summary.reactors == ["Unknown", "Ada"]
    assert summary.total == 2


@pytest.mark.asyncio
async def test_get_reactors(service, gateway):
    await gateway.upsert_profile("u1", "Ada")
    await service.toggle_reaction("u1", "post", 42, LOVE)

    reactors = await service.get_reactors("post", 42)

    assert [(r.name, r.reaction_type) for r in reactors] == [("Ada", LOVE)]


# =============================================================================
# Lead Engagement Tests
# =============================================================================


@pytest.mark.asyncio
async def test_lead_views(service):
    for ca_id in ("c1", "c2", "c1"):
        assert isinstance(await service.record_lead_view("L1", ca_id), Ok)

    assert await service.get_lead_view_count("L1") == 2


@pytest.mark.asyncio
async def test_lead_view_failure_is_returned(service, gateway, mocker):
    mocker.patch.object(
        gateway, "insert_lead_engagement", return_value=GatewayFailure("HTTP 500", transient=True)
    )

    result = await service.record_lead_view("L1", "c1")

    assert isinstance(result, GatewayFailure)


# =============================================================================
# Housekeeping Tests
# =============================================================================


@pytest.mark.asyncio
async def test_verify_and_statistics(service):
    await service.toggle_reaction("u1", "post", 42, LIKE)

    assert await service.verify() is True
    stats = await service.get_statistics()
    assert stats["reactions"] == 1
    assert stats["reaction_counts"] == 1


@pytest.mark.asyncio
async def test_verify_raises_on_failure(service, gateway, mocker):
    mocker.patch.object(gateway, "healthcheck", return_value=GatewayFailure("down", transient=True))
    with pytest.raises(GatewayError):
        await service.verify()


@pytest.mark.asyncio
async def test_initialize_and_close(temp_db_path):
    service = EngagementService(gateway=SQLiteGateway(database_path=temp_db_path))
    await service.initialize()
    await service.toggle_reaction("u1", "post", 1, LIKE)
    await service.close()

    assert temp_db_path.exists()
    assert service._caches == {}


def test_create_gateway_defaults_to_sqlite():
    assert isinstance(create_gateway(GatewayBackend.SQLITE), SQLiteGateway)


def test_create_gateway_rest(monkeypatch):
    from engagementdb.api import RestGateway
    from engagementdb.config import settings

    monkeypatch.setattr(settings, "gateway_url", "https://project.example.co")
    monkeypatch.setattr(settings, "gateway_key", "anon_key_1234567890")

    assert isinstance(create_gateway(GatewayBackend.REST), RestGateway)
