"""Counter aggregator: denormalized reaction counts per target.

Counts live in one bucket per (target, reaction type) and are only ever moved
by one in either direction through the gateway's atomic, zero-clamped
procedure. Reads are batched: a page of targets costs three gateway round
trips (counts, reactions, profiles) however many targets it holds.
"""

from collections.abc import Sequence

from engagementdb.config import settings
from engagementdb.interfaces import IPersistenceGateway
from engagementdb.logging import logger
from engagementdb.models import (
    Reaction,
    ReactionSummary,
    ReactionTransition,
    ReactionType,
    ReactorEntry,
    Target,
    TargetCounts,
    TargetType,
    empty_counts,
)
from engagementdb.result import unwrap
from engagementdb.utils import dedupe

UNKNOWN_REACTOR = "Unknown"


class CounterAggregator:
    """Adjusts and reads reaction counters.

    Args:
        gateway: Any IPersistenceGateway implementation
        preview_limit: Reactor names per target (defaults to settings.reactor_preview_limit)
    """

    def __init__(self, gateway: IPersistenceGateway, preview_limit: int | None = None):
        self.gateway = gateway
        self.preview_limit = (
            settings.reactor_preview_limit if preview_limit is None else preview_limit
        )

    async def adjust_count(
        self,
        target_id: int,
        reaction_type: ReactionType,
        delta: int,
        target_type: TargetType | str = TargetType.POST,
    ) -> int:
        """Move one counter bucket by +1 or -1 and return its new value.

        A decrement on an absent or zero bucket leaves it at zero.

        Raises:
            ValueError: If delta is not +1 or -1
            GatewayError: If the gateway call fails
        """
        if delta not in (1, -1):
            raise ValueError(f"delta must be +1 or -1, got {delta}")
        target = Target.of(target_type, target_id)
        return unwrap(
            await self.gateway.adjust_reaction_count(target, ReactionType(reaction_type), delta > 0)
        )

    async def apply_transition(self, target: Target, transition: ReactionTransition) -> None:
        """Issue the counter adjustments a ledger transition requires."""
        for reaction_type, delta in transition.deltas:
            await self.adjust_count(target.target_id, reaction_type, delta, target.target_type)

    async def get_counts_for_targets(
        self, targets: Sequence[Target]
    ) -> dict[Target, TargetCounts]:
        """Counts and reactor previews for a page of targets.

        Every requested target appears in the result with every reaction type
        present. Duplicate targets collapse into one entry.
        """
        counts, _ = await self._aggregate(targets)
        return counts

    async def get_summaries(
        self, user_id: str, targets: Sequence[Target]
    ) -> dict[Target, ReactionSummary]:
        """Like get_counts_for_targets(), plus the user's own reaction per target."""
        counts, reactions = await self._aggregate(targets)
        return {
            target: ReactionSummary(
                target=target,
                counts=target_counts.counts,
                reactors=target_counts.reactors,
                my_reaction=next(
                    (r.reaction_type for r in reactions.get(target, []) if r.user_id == user_id),
                    None,
                ),
            )
            for target, target_counts in counts.items()
        }

    async def _aggregate(
        self, targets: Sequence[Target]
    ) -> tuple[dict[Target, TargetCounts], dict[Target, list[Reaction]]]:
        targets = dedupe(targets)
        if not targets:
            return {}, {}

        counts = unwrap(await self.gateway.fetch_reaction_counts(targets))
        reactions = unwrap(await self.gateway.list_reactions_for_targets(targets))

        # Reactions arrive newest first; one row per user per target
        preview_ids = {
            target: [r.user_id for r in reactions.get(target, [])[: self.preview_limit]]
            for target in targets
        }
        names = await self._display_names(
            [user_id for ids in preview_ids.values() for user_id in ids]
        )

        result = {}
        for target in targets:
            bucket = empty_counts()
            bucket.update(counts.get(target, {}))
            result[target] = TargetCounts(
                target=target,
                counts=bucket,
                reactors=[names.get(user_id, UNKNOWN_REACTOR) for user_id in preview_ids[target]],
            )

        logger.debug(f"Aggregated counts for {len(targets)} target(s)")
        return result, reactions

    async def get_counts(self, target_type: TargetType | str, target_id: int) -> TargetCounts:
        """Counts and reactor preview for a single target."""
        target = Target.of(target_type, target_id)
        return (await self.get_counts_for_targets([target]))[target]

    async def get_reactors(self, target: Target) -> list[ReactorEntry]:
        """Everyone who reacted to a target, newest first."""
        reactions: list[Reaction] = unwrap(await self.gateway.list_reactions(target))
        profiles = unwrap(await self.gateway.fetch_profiles(dedupe(r.user_id for r in reactions)))
        entries = []
        for reaction in reactions:
            profile = profiles.get(reaction.user_id)
            entries.append(
                ReactorEntry(
                    user_id=reaction.user_id,
                    name=profile.name if profile else UNKNOWN_REACTOR,
                    profile_picture=profile.profile_picture if profile else None,
                    reaction_type=reaction.reaction_type,
                    created_at=reaction.created_at,
                )
            )
        return entries

    async def _display_names(self, user_ids: list[str]) -> dict[str, str]:
        profiles = unwrap(await self.gateway.fetch_profiles(dedupe(user_ids)))
        return {user_id: profile.name for user_id, profile in profiles.items()}


__all__ = ["CounterAggregator", "UNKNOWN_REACTOR"]
