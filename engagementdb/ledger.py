"""Reaction ledger: the authoritative record of who reacted with what.

The ledger holds at most one reaction per (user, target). Writes follow the
toggle rule:

- no existing reaction: insert the requested one
- same reaction again: delete it (toggle off)
- different reaction: change the row's type in place

Lookup and write are separate gateway calls; nothing here serializes two
concurrent writes from the same user. Gateways that provide the
single-transaction ``apply_reaction`` procedure should be driven through the
service facade instead.

Example:
    >>> ledger = ReactionLedger(gateway)
    >>> await ledger.set_reaction("u1", "post", 42, ReactionType.LIKE)
    <ReactionType.LIKE: 'like'>
    >>> await ledger.set_reaction("u1", "post", 42, ReactionType.LIKE) is None
    True
"""

from engagementdb.interfaces import IPersistenceGateway
from engagementdb.logging import logger
from engagementdb.models import (
    Reaction,
    ReactionTransition,
    ReactionType,
    Target,
    TargetType,
    TransitionKind,
)
from engagementdb.result import unwrap, unwrap_or_none


class ReactionLedger:
    """Reaction reads and three-way writes over a persistence gateway.

    Args:
        gateway: Any IPersistenceGateway implementation
    """

    def __init__(self, gateway: IPersistenceGateway):
        self.gateway = gateway

    async def get_reaction(
        self, user_id: str, target_type: TargetType | str, target_id: int
    ) -> ReactionType | None:
        """Return the user's current reaction to a target, or None."""
        target = Target.of(target_type, target_id)
        reaction = unwrap_or_none(await self.gateway.fetch_reaction(user_id, target))
        return reaction.reaction_type if reaction else None

    async def get_all_reactions(
        self, target_type: TargetType | str, target_id: int
    ) -> list[Reaction]:
        """Return every reaction to a target, newest first."""
        target = Target.of(target_type, target_id)
        return unwrap(await self.gateway.list_reactions(target))

    async def set_reaction(
        self,
        user_id: str,
        target_type: TargetType | str,
        target_id: int,
        new_type: ReactionType,
    ) -> ReactionType | None:
        """Apply the toggle rule and return the user's resulting reaction.

        Raises:
            GatewayError: If the lookup or the write fails
        """
        transition = await self.apply(user_id, Target.of(target_type, target_id), new_type)
        return transition.current

    async def apply(
        self, user_id: str, target: Target, new_type: ReactionType
    ) -> ReactionTransition:
        """Apply the toggle rule and return the full transition."""
        existing = unwrap_or_none(await self.gateway.fetch_reaction(user_id, target))
        previous = existing.reaction_type if existing else None
        transition = ReactionTransition.resolve(previous, ReactionType(new_type))

        match transition.kind:
            case TransitionKind.INSERTED:
                unwrap(await self.gateway.insert_reaction(user_id, target, new_type))
            case TransitionKind.REMOVED:
                unwrap(await self.gateway.delete_reaction(user_id, target))
            case TransitionKind.CHANGED:
                unwrap(await self.gateway.update_reaction(user_id, target, new_type))

        logger.debug(
            f"Reaction {transition.kind.value} for {user_id} on {target}: "
            f"{previous} -> {transition.current}"
        )
        return transition


__all__ = ["ReactionLedger"]
