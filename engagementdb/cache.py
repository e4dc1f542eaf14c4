"""Optimistic client-side cache of reaction summaries.

Each entry moves through a small state machine::

    SETTLED --begin--> PENDING --commit--> SETTLED
                               --rollback--> ROLLED_BACK --refetch--> SETTLED

``begin`` keeps a single-slot snapshot of the entry and applies the same
three-way delta the ledger will apply, so the control updates before the
write is confirmed. ``rollback`` restores the snapshot exactly. Both paths of
``mutate`` end by re-reading the authoritative state from the backend.

Only one mutation per target may be in flight: a second ``begin`` while the
entry is PENDING raises ``MutationPendingError``.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from engagementdb.errors import EngagementDBError, MutationPendingError
from engagementdb.logging import logger
from engagementdb.metrics import (
    cache_entries,
    cache_rollbacks_total,
    errors_total,
    pending_mutations,
)
from engagementdb.models import ReactionSummary, ReactionTransition, ReactionType, Target

T = TypeVar("T")


class CacheState(StrEnum):
    SETTLED = "settled"
    PENDING = "pending"
    ROLLED_BACK = "rolled_back"


@dataclass
class CacheEntry:
    summary: ReactionSummary
    state: CacheState = CacheState.SETTLED
    snapshot: ReactionSummary | None = None


class OptimisticCache:
    """Per-user cache of reaction summaries with optimistic updates.

    Args:
        owner: Identity whose "my reaction" the entries describe (for logging)
    """

    def __init__(self, owner: str | None = None):
        self.owner = owner
        self._entries: dict[Target, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, target: object) -> bool:
        return target in self._entries

    def state(self, target: Target) -> CacheState | None:
        entry = self._entries.get(target)
        return entry.state if entry else None

    def get(self, target: Target) -> ReactionSummary | None:
        """Return a copy of the cached summary, or None when not cached."""
        entry = self._entries.get(target)
        return entry.summary.model_copy(deep=True) if entry else None

    def put(self, summary: ReactionSummary) -> None:
        """Install authoritative server state as a SETTLED entry.

        Ignored while a mutation on the target is in flight.
        """
        entry = self._entries.get(summary.target)
        if entry is None:
            self._entries[summary.target] = CacheEntry(summary=summary.model_copy(deep=True))
            cache_entries.inc()
            return
        if entry.state == CacheState.PENDING:
            logger.debug(f"Skipping refresh of {summary.target}: mutation pending")
            return
        entry.summary = summary.model_copy(deep=True)
        entry.state = CacheState.SETTLED
        entry.snapshot = None

    def invalidate(self, target: Target) -> None:
        """Drop an entry so the next read goes to the backend."""
        entry = self._entries.get(target)
        if entry is None or entry.state == CacheState.PENDING:
            return
        del self._entries[target]
        cache_entries.dec()

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.state == CacheState.PENDING:
                pending_mutations.dec()
        cache_entries.dec(len(self._entries))
        self._entries.clear()

    # =========================================================================
    # Optimistic mutation cycle
    # =========================================================================

    def begin(self, target: Target, reaction_type: ReactionType) -> ReactionType | None:
        """Snapshot the entry and apply the speculative reaction change.

        An uncached target starts from zero counts and no reaction.

        Returns:
            The reaction the user is predicted to hold after the write

        Raises:
            MutationPendingError: If a mutation on the target is already in flight
        """
        entry = self._entries.get(target)
        if entry is None:
            entry = CacheEntry(summary=ReactionSummary(target=target))
            self._entries[target] = entry
            cache_entries.inc()
        elif entry.state == CacheState.PENDING:
            raise MutationPendingError(f"A reaction change on {target} is already pending")

        entry.snapshot = entry.summary.model_copy(deep=True)
        summary = entry.summary
        transition = ReactionTransition.resolve(summary.my_reaction, ReactionType(reaction_type))
        for bucket, delta in transition.deltas:
            summary.counts[bucket] = max(summary.counts.get(bucket, 0) + delta, 0)
        summary.my_reaction = transition.current

        entry.state = CacheState.PENDING
        pending_mutations.inc()
        return transition.current

    def commit(self, target: Target) -> None:
        """Accept the speculative state: PENDING -> SETTLED."""
        entry = self._pending_entry(target)
        entry.state = CacheState.SETTLED
        entry.snapshot = None
        pending_mutations.dec()

    def rollback(self, target: Target) -> None:
        """Restore the snapshot exactly: PENDING -> ROLLED_BACK."""
        entry = self._pending_entry(target)
        entry.summary = entry.snapshot  # type: ignore[assignment]
        entry.snapshot = None
        entry.state = CacheState.ROLLED_BACK
        pending_mutations.dec()
        cache_rollbacks_total.inc()
        logger.info(f"↩️ Rolled back optimistic reaction on {target}")

    def _pending_entry(self, target: Target) -> CacheEntry:
        entry = self._entries.get(target)
        if entry is None or entry.state != CacheState.PENDING:
            raise RuntimeError(f"No pending mutation on {target}")
        return entry

    async def mutate(
        self,
        target: Target,
        reaction_type: ReactionType,
        write: Callable[[], Awaitable[T]],
        refetch: Callable[[], Awaitable[ReactionSummary]],
    ) -> T:
        """Run the full optimistic cycle around a backend write.

        The write error, if any, is re-raised after the rollback and refetch.
        A cancelled write is rolled back and re-raised without a refetch; the
        entry is left ROLLED_BACK so the next read goes to the backend.
        """
        self.begin(target, reaction_type)
        try:
            result = await write()
        except Exception:
            self.rollback(target)
            await self._refresh(target, refetch)
            raise
        except BaseException:
            self.rollback(target)
            raise

        self.commit(target)
        await self._refresh(target, refetch)
        return result

    async def _refresh(
        self, target: Target, refetch: Callable[[], Awaitable[ReactionSummary]]
    ) -> None:
        """Invalidate-and-refetch; on failure keep current values as SETTLED."""
        try:
            summary = await refetch()
        except EngagementDBError as exc:
            errors_total.labels(error_type=type(exc).__name__, component="cache").inc()
            logger.warning(f"⚠️ Refetch of {target} failed, keeping cached values: {exc}")
            entry = self._entries.get(target)
            if entry is not None:
                entry.state = CacheState.SETTLED
            return
        self.put(summary)


__all__ = ["OptimisticCache", "CacheState", "CacheEntry"]
