"""Tests for the SQLite persistence gateway."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from engagementdb.database import SQLiteGateway
from engagementdb.interfaces import IPersistenceGateway
from engagementdb.metrics import registry
from engagementdb.models import ReactionType, Target, TransitionKind
from engagementdb.result import GatewayFailure, NotFound, Ok

LIKE = ReactionType.LIKE
LOVE = ReactionType.LOVE


class TestLifecycle:
    """Tests for gateway initialization and housekeeping."""

    def test_satisfies_protocol(self):
        assert isinstance(SQLiteGateway(database_path=Path(":memory:")), IPersistenceGateway)

    @pytest.mark.asyncio
    async def test_file_database_initializes(self, temp_db_path):
        gateway = SQLiteGateway(database_path=temp_db_path)
        await gateway.initialize()
        try:
            assert temp_db_path.exists()
            assert await gateway.healthcheck() == Ok(True)
        finally:
            await gateway.close()

    def test_database_url(self, temp_db_path):
        assert SQLiteGateway(database_path=Path(":memory:")).database_url == "sqlite://"
        assert SQLiteGateway(database_path=temp_db_path).database_url == f"sqlite:///{temp_db_path}"

    @pytest.mark.asyncio
    async def test_uninitialized_gateway_raises(self):
        gateway = SQLiteGateway(database_path=Path(":memory:"))
        with pytest.raises(RuntimeError, match="not initialized"):
            await gateway.fetch_reaction("u1", Target.of("post", 1))

    @pytest.mark.asyncio
    async def test_entity_counts(self, gateway, post_42):
        await gateway.apply_reaction("u1", post_42, LIKE)
        await gateway.insert_lead_engagement("L1", "c1", datetime.now(timezone.utc))

        counts = (await gateway.get_entity_counts()).value
        assert counts == {
            "reactions": 1,
            "reaction_counts": 1,
            "profiles": 0,
            "lead_engagements": 1,
        }


class TestReactionLedgerRows:
    """Tests for reaction row operations."""

    @pytest.mark.asyncio
    async def test_fetch_missing_reaction(self, gateway, post_42):
        assert isinstance(await gateway.fetch_reaction("u1", post_42), NotFound)

    @pytest.mark.asyncio
    async def test_insert_then_fetch(self, gateway, post_42):
        inserted = await gateway.insert_reaction("u1", post_42, LIKE)
        assert isinstance(inserted, Ok)

        fetched = await gateway.fetch_reaction("u1", post_42)
        assert fetched.value.reaction_type == LIKE
        assert fetched.value.created_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_insert_is_permanent_failure(self, gateway, post_42):
        await gateway.insert_reaction("u1", post_42, LIKE)
        result = await gateway.insert_reaction("u1", post_42, LOVE)

        assert isinstance(result, GatewayFailure)
        assert result.transient is False
        assert isinstance(result.error, IntegrityError)

        # Session was rolled back and stays usable
        assert (await gateway.fetch_reaction("u1", post_42)).value.reaction_type == LIKE

    @pytest.mark.asyncio
    async def test_update_and_delete(self, gateway, post_42):
        await gateway.insert_reaction("u1", post_42, LIKE)

        updated = await gateway.update_reaction("u1", post_42, LOVE)
        assert updated.value.reaction_type == LOVE

        assert await gateway.delete_reaction("u1", post_42) == Ok(True)
        assert isinstance(await gateway.delete_reaction("u1", post_42), NotFound)
        assert isinstance(await gateway.update_reaction("u1", post_42, LIKE), NotFound)

    @pytest.mark.asyncio
    async def test_list_reactions_newest_first(self, gateway, seed, post_42):
        base = datetime(2024, 1, 15, tzinfo=timezone.utc)
        seed.reaction("old", post_42, LIKE, base)
        seed.reaction("new", post_42, LOVE, base + timedelta(minutes=5))
        seed.reaction("mid", post_42, LIKE, base + timedelta(minutes=1))

        reactions = (await gateway.list_reactions(post_42)).value
        assert [r.user_id for r in reactions] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_list_reactions_for_targets_groups_by_target(self, gateway, post_42):
        comment = Target.of("comment", 42)
        empty = Target.of("post", 99)
        await gateway.insert_reaction("u1", post_42, LIKE)
        await gateway.insert_reaction("u2", comment, LOVE)

        grouped = (await gateway.list_reactions_for_targets([post_42, comment, empty])).value

        assert [r.user_id for r in grouped[post_42]] == ["u1"]
        assert [r.user_id for r in grouped[comment]] == ["u2"]
        assert grouped[empty] == []


class TestCounters:
    """Tests for counter buckets."""

    @pytest.mark.asyncio
    async def test_increment_and_decrement(self, gateway, post_42):
        assert (await gateway.adjust_reaction_count(post_42, LIKE, True)).value == 1
        assert (await gateway.adjust_reaction_count(post_42, LIKE, True)).value == 2
        assert (await gateway.adjust_reaction_count(post_42, LIKE, False)).value == 1

    @pytest.mark.asyncio
    async def test_decrement_clamps_at_zero(self, gateway, post_42):
        assert (await gateway.adjust_reaction_count(post_42, LIKE, False)).value == 0
        assert (await gateway.adjust_reaction_count(post_42, LIKE, True)).value == 1
        assert (await gateway.adjust_reaction_count(post_42, LIKE, False)).value == 0
        assert (await gateway.adjust_reaction_count(post_42, LIKE, False)).value == 0

    @pytest.mark.asyncio
    async def test_fetch_counts_fills_every_type(self, gateway, post_42):
        other = Target.of("post", 7)
        await gateway.adjust_reaction_count(post_42, LOVE, True)

        counts = (await gateway.fetch_reaction_counts([post_42, other])).value

        assert counts[post_42][LOVE] == 1
        assert counts[post_42][LIKE] == 0
        assert set(counts[other]) == set(ReactionType)
        assert sum(counts[other].values()) == 0

    @pytest.mark.asyncio
    async def test_counts_keyed_by_target_type(self, gateway):
        await gateway.adjust_reaction_count(Target.of("post", 1), LIKE, True)

        counts = (await gateway.fetch_reaction_counts([Target.of("comment", 1)])).value
        assert counts[Target.of("comment", 1)][LIKE] == 0


class TestApplyReaction:
    """Tests for the single-transaction reaction write."""

    @pytest.mark.asyncio
    async def test_three_way_transitions(self, gateway, post_42):
        first = (await gateway.apply_reaction("u1", post_42, LIKE)).value
        second = (await gateway.apply_reaction("u1", post_42, LOVE)).value
        third = (await gateway.apply_reaction("u1", post_42, LOVE)).value

        assert first.kind == TransitionKind.INSERTED
        assert second.kind == TransitionKind.CHANGED
        assert third.kind == TransitionKind.REMOVED

        counts = (await gateway.fetch_reaction_counts([post_42])).value[post_42]
        assert counts[LIKE] == 0
        assert counts[LOVE] == 0
        assert isinstance(await gateway.fetch_reaction("u1", post_42), NotFound)

    @pytest.mark.asyncio
    async def test_failure_rolls_back_ledger_and_counters(self, gateway, post_42, mocker):
        mocker.patch.object(
            gateway, "_adjust", side_effect=OperationalError("UPDATE", {}, Exception("locked"))
        )

        result = await gateway.apply_reaction("u1", post_42, LIKE)

        assert isinstance(result, GatewayFailure)
        assert result.transient is True
        mocker.stopall()
        assert isinstance(await gateway.fetch_reaction("u1", post_42), NotFound)

    @pytest.mark.asyncio
    async def test_records_request_metrics(self, gateway, post_42):
        labels = {"backend": "sqlite", "operation": "apply_reaction", "status": "success"}
        before = registry.get_sample_value("gateway_requests_total", labels) or 0

        await gateway.apply_reaction("u1", post_42, LIKE)

        assert registry.get_sample_value("gateway_requests_total", labels) == before + 1


class TestProfiles:
    """Tests for profile lookups."""

    @pytest.mark.asyncio
    async def test_fetch_profiles_omits_missing_users(self, gateway, seed):
        seed.profile("u1", "Ada")
        seed.profile("u2", None)

        profiles = (await gateway.fetch_profiles(["u1", "u2", "ghost"])).value

        assert profiles["u1"].name == "Ada"
        assert profiles["u2"].name == "Unknown"
        assert "ghost" not in profiles

    @pytest.mark.asyncio
    async def test_fetch_profiles_empty(self, gateway):
        assert await gateway.fetch_profiles([]) == Ok({})

    @pytest.mark.asyncio
    async def test_upsert_profile(self, gateway):
        await gateway.upsert_profile("u1", "Ada")
        await gateway.upsert_profile("u1", "Ada L.", "https://example.com/a.png")

        profile = (await gateway.fetch_profiles(["u1"])).value["u1"]
        assert profile.name == "Ada L."
        assert profile.profile_picture == "https://example.com/a.png"


class TestLeadEngagements:
    """Tests for lead engagement rows."""

    @pytest.mark.asyncio
    async def test_insert_and_fetch_earliest(self, gateway):
        first = datetime(2024, 1, 15, 9, tzinfo=timezone.utc)
        await gateway.insert_lead_engagement("L1", "c1", first + timedelta(hours=1))
        await gateway.insert_lead_engagement("L1", "c1", first)

        engagement = (await gateway.fetch_lead_engagement("L1", "c1")).value
        assert engagement.viewed_at == first

    @pytest.mark.asyncio
    async def test_fetch_missing_engagement(self, gateway):
        assert isinstance(await gateway.fetch_lead_engagement("L1", "c1"), NotFound)

    @pytest.mark.asyncio
    async def test_count_distinct_viewers_ignores_duplicates(self, gateway):
        now = datetime.now(timezone.utc)
        for ca_id in ("c1", "c2", "c1"):
            await gateway.insert_lead_engagement("L1", ca_id, now)

        counts = (await gateway.count_distinct_viewers(["L1", "L2"])).value
        assert counts == {"L1": 2, "L2": 0}

    @pytest.mark.asyncio
    async def test_update_engagement(self, gateway):
        await gateway.insert_lead_engagement("L1", "c1", datetime.now(timezone.utc))
        hidden_at = datetime(2024, 2, 1, tzinfo=timezone.utc)

        updated = await gateway.update_lead_engagement(
            "L1", "c1", {"is_hidden": True, "hidden_at": hidden_at, "notes": "call back"}
        )

        assert updated.value.is_hidden is True
        assert updated.value.hidden_at == hidden_at
        assert updated.value.notes == "call back"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, gateway):
        with pytest.raises(ValueError, match="lead_id"):
            await gateway.update_lead_engagement("L1", "c1", {"lead_id": "L2"})

    @pytest.mark.asyncio
    async def test_update_missing_engagement(self, gateway):
        result = await gateway.update_lead_engagement("L1", "c1", {"notes": "x"})
        assert isinstance(result, NotFound)

    @pytest.mark.asyncio
    async def test_list_engagements(self, gateway):
        base = datetime(2024, 1, 15, tzinfo=timezone.utc)
        await gateway.insert_lead_engagement("L1", "c2", base + timedelta(minutes=1))
        await gateway.insert_lead_engagement("L1", "c1", base)
        await gateway.insert_lead_engagement("L2", "c1", base + timedelta(minutes=2))

        by_lead = (await gateway.list_lead_engagements("L1")).value
        by_ca = (await gateway.list_engagements_for_ca("c1")).value

        assert [e.ca_id for e in by_lead] == ["c1", "c2"]
        assert [e.lead_id for e in by_ca] == ["L2", "L1"]


def test_gateway_usable_across_event_loops(gateway, post_42):
    """Sync fixtures and async tests may drive the same gateway."""
    result = asyncio.run(gateway.apply_reaction("u1", post_42, LIKE))
    assert result.value.kind == TransitionKind.INSERTED
