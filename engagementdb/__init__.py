"""EngagementDB - reaction counting and lead engagement tracking.

This package provides the data core behind a social feed's reaction controls
and a leads dashboard: a reaction ledger with toggle semantics, denormalized
per-type counters, an optimistic client cache with exact rollback, and an
idempotent record of which CAs viewed which leads.

Example:
    >>> from engagementdb import EngagementService, ReactionType
    >>> import asyncio
    >>>
    >>> async def main():
    ...     service = EngagementService()
    ...     await service.initialize()
    ...     await service.toggle_reaction("u1", "post", 42, ReactionType.LIKE)
    ...     await service.close()
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from engagementdb.aggregator import CounterAggregator
from engagementdb.api import RestGateway
from engagementdb.cache import CacheState, OptimisticCache
from engagementdb.config import settings
from engagementdb.database import SQLiteGateway
from engagementdb.engagement import EngagementRecorder
from engagementdb.errors import (
    EngagementDBError,
    GatewayError,
    MutationPendingError,
    NotFoundError,
    TransientGatewayError,
)
from engagementdb.ledger import ReactionLedger
from engagementdb.models import (
    LeadEngagement,
    Reaction,
    ReactionSummary,
    ReactionTransition,
    ReactionType,
    Reactor,
    ReactorEntry,
    Target,
    TargetCounts,
    TargetType,
)
from engagementdb.result import GatewayFailure, GatewayResult, NotFound, Ok
from engagementdb.service import EngagementService

__all__ = [
    # Main components
    "EngagementService",
    "ReactionLedger",
    "CounterAggregator",
    "OptimisticCache",
    "CacheState",
    "EngagementRecorder",
    "SQLiteGateway",
    "RestGateway",
    # Configuration
    "settings",
    # Results and errors
    "Ok",
    "NotFound",
    "GatewayFailure",
    "GatewayResult",
    "EngagementDBError",
    "GatewayError",
    "TransientGatewayError",
    "NotFoundError",
    "MutationPendingError",
    # Domain records
    "Target",
    "TargetType",
    "ReactionType",
    "Reaction",
    "ReactionTransition",
    "Reactor",
    "ReactorEntry",
    "TargetCounts",
    "ReactionSummary",
    "LeadEngagement",
]
