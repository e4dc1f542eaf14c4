"""Unit tests for data models."""

from datetime import timezone

import pytest
from pydantic import ValidationError

from engagementdb.models import (
    LeadEngagement,
    LeadEngagementRow,
    ProfileRow,
    Reaction,
    ReactionRow,
    ReactionTransition,
    ReactionType,
    Reactor,
    Target,
    TargetCounts,
    TargetType,
    TransitionKind,
    empty_counts,
)


class TestTarget:
    """Tests for Target identity."""

    def test_of_accepts_strings(self):
        target = Target.of("comment", 7)
        assert target.target_type == TargetType.COMMENT
        assert target.target_id == 7

    def test_str(self):
        assert str(Target.of(TargetType.POST, 42)) == "post:42"

    def test_hashable_and_equal_by_value(self):
        assert Target.of("post", 1) == Target.of(TargetType.POST, 1)
        assert len({Target.of("post", 1), Target.of("post", 1)}) == 1

    def test_post_and_comment_with_same_id_differ(self):
        assert Target.of("post", 1) != Target.of("comment", 1)

    def test_invalid_target_type(self):
        with pytest.raises(ValueError):
            Target.of("story", 1)

    def test_frozen(self):
        target = Target.of("post", 1)
        with pytest.raises(ValidationError):
            target.target_id = 2  # type: ignore[misc]


class TestReactionTransition:
    """Tests for the toggle rule and counter deltas."""

    def test_fresh_reaction_inserts(self):
        transition = ReactionTransition.resolve(None, ReactionType.LIKE)
        assert transition.kind == TransitionKind.INSERTED
        assert transition.current == ReactionType.LIKE
        assert transition.deltas == [(ReactionType.LIKE, 1)]

    def test_same_reaction_toggles_off(self):
        transition = ReactionTransition.resolve(ReactionType.LIKE, ReactionType.LIKE)
        assert transition.kind == TransitionKind.REMOVED
        assert transition.current is None
        assert transition.deltas == [(ReactionType.LIKE, -1)]

    def test_different_reaction_changes_decrement_first(self):
        transition = ReactionTransition.resolve(ReactionType.LIKE, ReactionType.LOVE)
        assert transition.kind == TransitionKind.CHANGED
        assert transition.deltas == [(ReactionType.LIKE, -1), (ReactionType.LOVE, 1)]

    def test_change_conserves_total(self):
        transition = ReactionTransition.resolve(ReactionType.SAD, ReactionType.ANGRY)
        assert sum(delta for _, delta in transition.deltas) == 0

    def test_decodes_procedure_payload(self):
        transition = ReactionTransition.model_validate({"previous": "like", "current": None})
        assert transition.previous == ReactionType.LIKE
        assert transition.kind == TransitionKind.REMOVED


class TestDomainRecords:
    """Tests for Pydantic domain records."""

    def test_reaction_parses_timestamp(self):
        reaction = Reaction.model_validate(
            {
                "id": 1,
                "user_id": "u1",
                "target_type": "post",
                "target_id": 42,
                "reaction_type": "love",
                "created_at": "2024-01-15T10:30:00+00:00",
            }
        )
        assert reaction.reaction_type == ReactionType.LOVE
        assert reaction.created_at.tzinfo == timezone.utc
        assert reaction.target == Target.of("post", 42)

    def test_reaction_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            Reaction.model_validate(
                {"user_id": "u1", "target_type": "post", "target_id": 1, "reaction_type": "fire"}
            )

    def test_reactor_missing_name_is_unknown(self):
        assert Reactor.model_validate({"user_id": "u1", "name": None}).name == "Unknown"
        assert Reactor(user_id="u1").name == "Unknown"

    def test_target_counts_total_and_top_types(self):
        counts = empty_counts()
        counts.update({ReactionType.LIKE: 5, ReactionType.LAUGH: 2, ReactionType.SAD: 9})
        item = TargetCounts(target=Target.of("post", 1), counts=counts)

        assert item.total == 16
        assert item.top_types() == [ReactionType.SAD, ReactionType.LIKE, ReactionType.LAUGH]
        assert item.top_types(limit=1) == [ReactionType.SAD]

    def test_empty_counts_has_every_type(self):
        assert set(empty_counts()) == set(ReactionType)
        assert sum(empty_counts().values()) == 0

    def test_lead_engagement_defaults(self):
        engagement = LeadEngagement.model_validate(
            {"id": "e1", "lead_id": "L1", "ca_id": "c1", "viewed_at": "2024-01-15T10:30:00Z"}
        )
        assert engagement.is_hidden is False
        assert engagement.hidden_at is None
        assert engagement.viewed_at.tzinfo == timezone.utc


class TestTableConversion:
    """Tests for SQLModel row to domain conversion."""

    def test_reaction_row_to_domain(self):
        row = ReactionRow(
            id=3,
            user_id="u1",
            target_type="comment",
            target_id=9,
            reaction_type="laugh",
            created_at="2024-01-15T10:30:00Z",
        )
        reaction = row.to_domain()
        assert reaction.target == Target.of("comment", 9)
        assert reaction.reaction_type == ReactionType.LAUGH

    def test_profile_row_to_domain(self):
        assert ProfileRow(user_id="u1", name=None).to_domain().name == "Unknown"

    def test_lead_engagement_row_to_domain(self):
        row = LeadEngagementRow(
            id="e1", lead_id="L1", ca_id="c1", viewed_at="2024-01-15T10:30:00Z", is_hidden=True
        )
        assert row.to_domain().is_hidden is True
