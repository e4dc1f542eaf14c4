"""Protocol interfaces for dependency injection.

This module defines the Protocol that every persistence gateway satisfies.
Using @runtime_checkable Protocol allows the ledger, aggregator and recorder
to accept the SQLite gateway, the hosted REST gateway, or a test double
without any inheritance.

Every gateway method is a coroutine returning a ``GatewayResult``: gateways
never raise for backend failures, they return ``GatewayFailure``.

Example:
    >>> from engagementdb.interfaces import IPersistenceGateway
    >>> from engagementdb.database import SQLiteGateway
    >>> isinstance(SQLiteGateway(), IPersistenceGateway)
    True
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from engagementdb.models import (
    LeadEngagement,
    Reaction,
    ReactionTransition,
    ReactionType,
    Reactor,
    Target,
)
from engagementdb.result import GatewayResult


@runtime_checkable
class IPersistenceGateway(Protocol):
    """Persistence gateway interface.

    Implementations own all durable Reaction, counter and LeadEngagement
    state and provide:
    - Point and range queries with equality filters
    - An atomic, zero-clamped counter adjustment
    - Single-row insert, update and delete keyed by composite key
    """

    async def initialize(self) -> None:
        """Open connections and prepare the schema where applicable."""
        ...

    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        ...

    async def healthcheck(self) -> GatewayResult[bool]:
        """Verify the backend is reachable."""
        ...

    async def get_entity_counts(self) -> GatewayResult[dict[str, int]]:
        """Row counts per table."""
        ...

    # -------------------------------------------------------------------------
    # Reaction ledger
    # -------------------------------------------------------------------------

    async def fetch_reaction(
        self, user_id: str, target: Target
    ) -> GatewayResult[Reaction]:
        """Get the user's reaction to a target (NotFound if none)."""
        ...

    async def list_reactions(self, target: Target) -> GatewayResult[list[Reaction]]:
        """All reactions to a target, newest first."""
        ...

    async def list_reactions_for_targets(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, list[Reaction]]]:
        """Reactions for several targets in one round trip, newest first."""
        ...

    async def insert_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        """Insert a new reaction row."""
        ...

    async def update_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        """Change the type of an existing reaction row (NotFound if none)."""
        ...

    async def delete_reaction(self, user_id: str, target: Target) -> GatewayResult[bool]:
        """Delete the user's reaction row (NotFound if none)."""
        ...

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    async def adjust_reaction_count(
        self, target: Target, reaction_type: ReactionType, increment: bool
    ) -> GatewayResult[int]:
        """Atomically add or remove one from a counter bucket.

        A decrement never takes a bucket below zero. Returns the new count.
        """
        ...

    async def fetch_reaction_counts(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, dict[ReactionType, int]]]:
        """Counter buckets for several targets in one round trip."""
        ...

    async def apply_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[ReactionTransition]:
        """Apply the three-way reaction write and its counter pairing atomically."""
        ...

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def fetch_profiles(
        self, user_ids: Sequence[str]
    ) -> GatewayResult[dict[str, Reactor]]:
        """Public profiles keyed by user id (missing users are omitted)."""
        ...

    # -------------------------------------------------------------------------
    # Lead engagements
    # -------------------------------------------------------------------------

    async def insert_lead_engagement(
        self, lead_id: str, ca_id: str, viewed_at: datetime
    ) -> GatewayResult[LeadEngagement]:
        """Append a lead view."""
        ...

    async def fetch_lead_engagement(
        self, lead_id: str, ca_id: str
    ) -> GatewayResult[LeadEngagement]:
        """Earliest engagement of a CA with a lead (NotFound if none)."""
        ...

    async def list_lead_engagements(
        self, lead_id: str
    ) -> GatewayResult[list[LeadEngagement]]:
        """All engagements with a lead, oldest first."""
        ...

    async def list_engagements_for_ca(
        self, ca_id: str
    ) -> GatewayResult[list[LeadEngagement]]:
        """All engagements recorded for a CA."""
        ...

    async def count_distinct_viewers(
        self, lead_ids: Sequence[str]
    ) -> GatewayResult[dict[str, int]]:
        """Number of distinct CAs per lead (0 for unseen leads)."""
        ...

    async def update_lead_engagement(
        self, lead_id: str, ca_id: str, changes: dict[str, Any]
    ) -> GatewayResult[LeadEngagement]:
        """Update CA-private fields of a CA's engagement rows (NotFound if none)."""
        ...
