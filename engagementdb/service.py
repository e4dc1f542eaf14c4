"""Service facade for reactions and lead engagement.

This module wires the ledger, the aggregator, the per-user optimistic caches
and the engagement recorder over one persistence gateway:

1. Toggle: optimistic cache update, backend write, invalidate-and-refetch
2. Read: summaries served from the user's cache, misses fetched in one batch
3. Record: lead views as non-blocking telemetry

Every operation takes the acting identity explicitly and runs inside a
logging request context.
"""

from collections.abc import Sequence
from typing import Optional

from engagementdb.aggregator import CounterAggregator
from engagementdb.cache import CacheState, OptimisticCache
from engagementdb.config import GatewayBackend, settings
from engagementdb.database import SQLiteGateway
from engagementdb.engagement import EngagementRecorder
from engagementdb.errors import EngagementDBError
from engagementdb.interfaces import IPersistenceGateway
from engagementdb.ledger import ReactionLedger
from engagementdb.logging import logger, request_context
from engagementdb.metrics import reaction_toggles_total
from engagementdb.models import (
    LeadEngagement,
    ReactionSummary,
    ReactionTransition,
    ReactionType,
    ReactorEntry,
    Target,
    TargetType,
)
from engagementdb.result import GatewayResult, unwrap
from engagementdb.utils import dedupe


def create_gateway(backend: Optional[GatewayBackend] = None) -> IPersistenceGateway:
    """Build the gateway selected by settings.gateway_backend."""
    backend = backend or settings.gateway_backend
    if backend == GatewayBackend.REST:
        from engagementdb.api import RestGateway

        return RestGateway()
    return SQLiteGateway()


class EngagementService:
    """Reaction and engagement operations for one process.

    Example:
        >>> service = EngagementService()
        >>> await service.initialize()
        >>> await service.toggle_reaction("u1", "post", 42, ReactionType.LIKE)
        <ReactionType.LIKE: 'like'>
        >>> await service.close()
    """

    def __init__(
        self,
        gateway: Optional[IPersistenceGateway] = None,
        atomic_writes: Optional[bool] = None,
    ):
        """Initialize the service.

        Args:
            gateway: Persistence gateway (built from settings if None)
            atomic_writes: Use the single-transaction reaction write
                (defaults to settings.atomic_reaction_writes)
        """
        self.gateway = gateway or create_gateway()
        self.atomic_writes = (
            settings.atomic_reaction_writes if atomic_writes is None else atomic_writes
        )
        self.ledger = ReactionLedger(self.gateway)
        self.aggregator = CounterAggregator(self.gateway)
        self.recorder = EngagementRecorder(self.gateway)
        self._caches: dict[str, OptimisticCache] = {}

    async def initialize(self) -> None:
        await self.gateway.initialize()
        logger.info("✅ Engagement service initialized")

    async def close(self) -> None:
        for cache in self._caches.values():
            cache.clear()
        self._caches.clear()
        await self.gateway.close()
        logger.info("✅ Engagement service closed")

    def cache_for(self, user_id: str) -> OptimisticCache:
        """The optimistic cache holding this user's view of reaction state."""
        if user_id not in self._caches:
            self._caches[user_id] = OptimisticCache(owner=user_id)
        return self._caches[user_id]

    # =========================================================================
    # Reactions
    # =========================================================================

    async def toggle_reaction(
        self,
        user_id: str,
        target_type: TargetType | str,
        target_id: int,
        reaction_type: ReactionType | str,
    ) -> ReactionType | None:
        """Toggle a user's reaction and return the reaction they now hold.

        Raises:
            MutationPendingError: If a toggle on the target is already in flight
            GatewayError: If the write fails (the optimistic update is rolled back)
        """
        target = Target.of(target_type, target_id)
        reaction_type = ReactionType(reaction_type)

        with request_context(user_id=user_id, operation="toggle_reaction"):

            async def write() -> ReactionTransition:
                return await self._write_reaction(user_id, target, reaction_type)

            async def refetch() -> ReactionSummary:
                return (await self.aggregator.get_summaries(user_id, [target]))[target]

            cache = self.cache_for(user_id)
            if target not in cache:
                await self._prime(cache, user_id, target)

            try:
                transition = await cache.mutate(target, reaction_type, write, refetch)
            except EngagementDBError as exc:
                reaction_toggles_total.labels(
                    target_type=target.target_type.value, outcome="failed"
                ).inc()
                logger.error(f"❌ Reaction toggle on {target} failed: {exc}")
                raise

            reaction_toggles_total.labels(
                target_type=target.target_type.value, outcome=transition.kind.value
            ).inc()
            logger.info(f"✅ Reaction on {target} {transition.kind.value}: {transition.current}")
            return transition.current

    async def _prime(self, cache: OptimisticCache, user_id: str, target: Target) -> None:
        """Load the server state of an uncached target before predicting a toggle."""
        try:
            summaries = await self.aggregator.get_summaries(user_id, [target])
        except EngagementDBError as exc:
            logger.warning(
                f"⚠️ Could not load {target} before toggling, predicting from zero: {exc}"
            )
            return
        cache.put(summaries[target])

    async def _write_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> ReactionTransition:
        if self.atomic_writes:
            return unwrap(await self.gateway.apply_reaction(user_id, target, reaction_type))

        transition = await self.ledger.apply(user_id, target, reaction_type)
        await self.aggregator.apply_transition(target, transition)
        return transition

    async def get_reaction_summary(
        self, user_id: str, target_type: TargetType | str, target_id: int
    ) -> ReactionSummary:
        target = Target.of(target_type, target_id)
        return (await self.get_reaction_summaries(user_id, [target]))[target]

    async def get_reaction_summaries(
        self, user_id: str, targets: Sequence[Target]
    ) -> dict[Target, ReactionSummary]:
        """Summaries for a page of targets as seen by one user.

        Settled cache entries are served directly; everything else is fetched
        in one batch and installed in the cache.
        """
        with request_context(user_id=user_id, operation="get_reaction_summaries"):
            cache = self.cache_for(user_id)
            targets = dedupe(targets)
            misses = [t for t in targets if cache.state(t) != CacheState.SETTLED]

            fetched = await self.aggregator.get_summaries(user_id, misses) if misses else {}
            for summary in fetched.values():
                cache.put(summary)

            logger.debug(
                f"Summaries for {len(targets)} target(s), {len(misses)} fetched from backend"
            )
            return {
                target: fetched[target] if target in fetched else cache.get(target)  # type: ignore[misc]
                for target in targets
            }

    async def get_reactors(
        self, target_type: TargetType | str, target_id: int
    ) -> list[ReactorEntry]:
        """The "who reacted" list for a target, newest first."""
        with request_context(operation="get_reactors"):
            return await self.aggregator.get_reactors(Target.of(target_type, target_id))

    # =========================================================================
    # Lead engagement
    # =========================================================================

    async def record_lead_view(self, lead_id: str, ca_id: str) -> GatewayResult[LeadEngagement]:
        """Record a CA's view of a lead; failures are returned, never raised."""
        with request_context(user_id=ca_id, operation="record_lead_view"):
            return await self.recorder.record_engagement(lead_id, ca_id)

    async def get_lead_view_count(self, lead_id: str) -> int:
        with request_context(operation="get_lead_view_count"):
            return await self.recorder.count_distinct_viewers(lead_id)

    # =========================================================================
    # Housekeeping
    # =========================================================================

    async def verify(self) -> bool:
        """Check that the gateway is reachable.

        Raises:
            GatewayError: If the healthcheck fails
        """
        return unwrap(await self.gateway.healthcheck())

    async def get_statistics(self) -> dict[str, int]:
        """Row counts per table."""
        return unwrap(await self.gateway.get_entity_counts())


__all__ = ["EngagementService", "create_gateway"]
