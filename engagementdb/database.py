"""SQLite persistence gateway for EngagementDB.

This module provides a local implementation of the persistence gateway with:
- Connection management with WAL mode
- The reaction ledger, counter buckets, profiles and lead engagements
- An atomic zero-clamped counter adjustment
- A single-transaction reaction write (ledger row plus counter pairing)
- Index creation for the feed and dashboard query patterns

Every public coroutine returns a ``GatewayResult``; SQLAlchemy errors are
rolled back and returned as ``GatewayFailure``.

Example:
    >>> from engagementdb.database import SQLiteGateway
    >>> from engagementdb.models import ReactionType, Target
    >>>
    >>> gateway = SQLiteGateway()
    >>> await gateway.initialize()
    >>> result = await gateway.apply_reaction("u1", Target.of("post", 42), ReactionType.LIKE)
    >>> await gateway.close()
"""

import functools
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import and_, func, or_, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from engagementdb.config import MEMORY_DATABASE, settings
from engagementdb.logging import logger
from engagementdb.metrics import (
    errors_total,
    gateway_request_duration_seconds,
    gateway_requests_total,
)
from engagementdb.models import (
    ENGAGEMENT_MUTABLE_FIELDS,
    LeadEngagement,
    LeadEngagementRow,
    ProfileRow,
    Reaction,
    ReactionCountRow,
    ReactionRow,
    ReactionTransition,
    ReactionType,
    Reactor,
    Target,
    TransitionKind,
    empty_counts,
)
from engagementdb.result import GatewayFailure, GatewayResult, NotFound, Ok
from engagementdb.utils import dedupe, format_iso, utc_now_iso

BACKEND = "sqlite"

R = TypeVar("R")


def gateway_operation(
    operation: str,
) -> Callable[[Callable[..., Awaitable[GatewayResult[R]]]], Callable[..., Awaitable[GatewayResult[R]]]]:
    """Convert SQLAlchemy errors into GatewayFailure and record metrics.

    The session is rolled back so the next call starts from a clean state.
    Locked-database errors are reported as transient.
    """

    def decorator(
        fn: Callable[..., Awaitable[GatewayResult[R]]],
    ) -> Callable[..., Awaitable[GatewayResult[R]]]:
        @functools.wraps(fn)
        async def wrapper(self: "SQLiteGateway", *args: Any, **kwargs: Any) -> GatewayResult[R]:
            start = time.perf_counter()
            try:
                result = await fn(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                self._rollback()
                errors_total.labels(error_type=type(exc).__name__, component="database").inc()
                logger.error(f"❌ {operation} failed: {exc}")
                result = GatewayFailure(
                    reason=f"{operation} failed: {getattr(exc, 'orig', None) or exc}",
                    transient=isinstance(exc, OperationalError),
                    error=exc,
                )
            finally:
                gateway_request_duration_seconds.labels(
                    backend=BACKEND, operation=operation
                ).observe(time.perf_counter() - start)

            match result:
                case Ok():
                    status = "success"
                case NotFound():
                    status = "not_found"
                case _:
                    status = "error"
            gateway_requests_total.labels(
                backend=BACKEND, operation=operation, status=status
            ).inc()
            return result

        return wrapper

    return decorator


# =============================================================================
# SQLite Gateway
# =============================================================================


class SQLiteGateway:
    """Persistence gateway backed by a local SQLite database.

    Features:
    - WAL mode for better read concurrency
    - Unique (user, target) constraint on the reaction ledger
    - Counter buckets that never drop below zero
    - Single-transaction reaction writes

    Args:
        database_path: Path to SQLite database file (defaults to settings.database_path)

    Example:
        >>> gateway = SQLiteGateway(database_path=Path("engagement.db"))
        >>> await gateway.initialize()
        >>> counts = await gateway.fetch_reaction_counts([Target.of("post", 1)])
        >>> await gateway.close()
    """

    def __init__(self, database_path: Path | None = None):
        self.database_path = database_path or settings.database_path
        self.engine = None
        self.session: Session | None = None

    @property
    def is_memory(self) -> bool:
        return self.database_path == MEMORY_DATABASE

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL of the gateway's database."""
        if self.is_memory:
            return "sqlite://"
        return f"sqlite:///{self.database_path}"

    async def initialize(self) -> None:
        """Initialize database engine and create tables.

        This method:
        1. Creates database file if it doesn't exist
        2. Creates all tables from SQLModel
        3. Enables WAL mode for file databases
        4. Creates composite indexes for common queries
        """
        if self.is_memory:
            self.engine = create_engine(
                self.database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                self.database_url,
                echo=False,
                connect_args={"check_same_thread": False},
            )

        SQLModel.metadata.create_all(self.engine)

        if not self.is_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.exec_driver_sql("PRAGMA temp_store = MEMORY;")
                conn.commit()

        self.create_indexes()

        self.session = Session(self.engine)
        logger.info(f"✅ Database initialized at {self.database_path}")

    def create_indexes(self) -> None:
        """Create composite indexes for the feed and dashboard query patterns."""
        if self.engine is None:
            raise RuntimeError("Database not initialized")

        statements = [
            """
            CREATE INDEX IF NOT EXISTS idx_reaction_target_created
            ON reactions(target_type, target_id, created_at DESC)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_reaction_count_target
            ON reaction_counts(target_type, target_id)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_engagement_lead_ca
            ON lead_engagements(lead_id, ca_id)
            """,
        ]
        with self.engine.connect() as conn:
            for statement in statements:
                conn.execute(text(statement))
            conn.commit()

        logger.debug("✅ Database indexes created")

    async def close(self) -> None:
        """Close database connection and cleanup resources."""
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _session(self) -> Session:
        if self.session is None:
            raise RuntimeError("Database not initialized")
        return self.session

    def _rollback(self) -> None:
        if self.session is not None:
            self.session.rollback()

    # =========================================================================
    # Housekeeping
    # =========================================================================

    @gateway_operation("healthcheck")
    async def healthcheck(self) -> GatewayResult[bool]:
        self._session().connection().exec_driver_sql("SELECT 1").scalar()
        return Ok(True)

    @gateway_operation("get_entity_counts")
    async def get_entity_counts(self) -> GatewayResult[dict[str, int]]:
        """Row counts per table."""
        session = self._session()
        counts = {}
        for model in (ReactionRow, ReactionCountRow, ProfileRow, LeadEngagementRow):
            stmt = select(func.count()).select_from(model)
            counts[model.__tablename__] = session.exec(stmt).one()
        return Ok(counts)

    # =========================================================================
    # Reaction Ledger
    # =========================================================================

    def _reaction_row(self, user_id: str, target: Target) -> ReactionRow | None:
        stmt = select(ReactionRow).where(
            ReactionRow.user_id == user_id,
            ReactionRow.target_type == target.target_type.value,
            ReactionRow.target_id == target.target_id,
        )
        return self._session().exec(stmt).first()

    @gateway_operation("fetch_reaction")
    async def fetch_reaction(self, user_id: str, target: Target) -> GatewayResult[Reaction]:
        row = self._reaction_row(user_id, target)
        if row is None:
            return NotFound(f"reaction of {user_id} on {target}")
        return Ok(row.to_domain())

    @gateway_operation("list_reactions")
    async def list_reactions(self, target: Target) -> GatewayResult[list[Reaction]]:
        stmt = (
            select(ReactionRow)
            .where(
                ReactionRow.target_type == target.target_type.value,
                ReactionRow.target_id == target.target_id,
            )
            .order_by(ReactionRow.created_at.desc(), ReactionRow.id.desc())
        )
        return Ok([row.to_domain() for row in self._session().exec(stmt).all()])

    @gateway_operation("list_reactions_for_targets")
    async def list_reactions_for_targets(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, list[Reaction]]]:
        targets = dedupe(targets)
        grouped: dict[Target, list[Reaction]] = {target: [] for target in targets}
        if not targets:
            return Ok(grouped)

        stmt = (
            select(ReactionRow)
            .where(or_(*(self._target_clause(ReactionRow, target) for target in targets)))
            .order_by(ReactionRow.created_at.desc(), ReactionRow.id.desc())
        )
        for row in self._session().exec(stmt).all():
            reaction = row.to_domain()
            grouped[reaction.target].append(reaction)
        return Ok(grouped)

    @gateway_operation("insert_reaction")
    async def insert_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        session = self._session()
        row = self._new_reaction_row(user_id, target, reaction_type)
        session.add(row)
        session.commit()
        session.refresh(row)
        return Ok(row.to_domain())

    @gateway_operation("update_reaction")
    async def update_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        session = self._session()
        row = self._reaction_row(user_id, target)
        if row is None:
            return NotFound(f"reaction of {user_id} on {target}")
        row.reaction_type = reaction_type.value
        session.add(row)
        session.commit()
        session.refresh(row)
        return Ok(row.to_domain())

    @gateway_operation("delete_reaction")
    async def delete_reaction(self, user_id: str, target: Target) -> GatewayResult[bool]:
        session = self._session()
        row = self._reaction_row(user_id, target)
        if row is None:
            return NotFound(f"reaction of {user_id} on {target}")
        session.delete(row)
        session.commit()
        return Ok(True)

    @staticmethod
    def _new_reaction_row(
        user_id: str, target: Target, reaction_type: ReactionType
    ) -> ReactionRow:
        return ReactionRow(
            user_id=user_id,
            target_type=target.target_type.value,
            target_id=target.target_id,
            reaction_type=reaction_type.value,
            created_at=utc_now_iso(),
        )

    @staticmethod
    def _target_clause(model: Any, target: Target) -> Any:
        return and_(
            model.target_type == target.target_type.value,
            model.target_id == target.target_id,
        )

    # =========================================================================
    # Counters
    # =========================================================================

    def _adjust(self, target: Target, reaction_type: ReactionType, delta: int) -> int:
        """Apply a delta to a counter bucket inside the current transaction."""
        session = self._session()
        key = (target.target_type.value, target.target_id, reaction_type.value)
        row = session.get(ReactionCountRow, key)
        if row is None:
            row = ReactionCountRow(
                target_type=key[0],
                target_id=key[1],
                reaction_type=key[2],
                count=max(delta, 0),
            )
        else:
            row.count = max(row.count + delta, 0)
        session.add(row)
        return row.count

    @gateway_operation("adjust_reaction_count")
    async def adjust_reaction_count(
        self, target: Target, reaction_type: ReactionType, increment: bool
    ) -> GatewayResult[int]:
        count = self._adjust(target, reaction_type, 1 if increment else -1)
        self._session().commit()
        return Ok(count)

    @gateway_operation("fetch_reaction_counts")
    async def fetch_reaction_counts(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, dict[ReactionType, int]]]:
        targets = dedupe(targets)
        counts: dict[Target, dict[ReactionType, int]] = {
            target: empty_counts() for target in targets
        }
        if not targets:
            return Ok(counts)

        stmt = select(ReactionCountRow).where(
            or_(*(self._target_clause(ReactionCountRow, target) for target in targets))
        )
        for row in self._session().exec(stmt).all():
            target = Target.of(row.target_type, row.target_id)
            counts[target][ReactionType(row.reaction_type)] = max(row.count, 0)
        return Ok(counts)

    @gateway_operation("apply_reaction")
    async def apply_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[ReactionTransition]:
        """Write the ledger row and its counter pairing in one transaction."""
        session = self._session()
        row = self._reaction_row(user_id, target)
        previous = ReactionType(row.reaction_type) if row is not None else None
        transition = ReactionTransition.resolve(previous, reaction_type)

        match transition.kind:
            case TransitionKind.INSERTED:
                session.add(self._new_reaction_row(user_id, target, reaction_type))
            case TransitionKind.REMOVED:
                session.delete(row)
            case TransitionKind.CHANGED:
                row.reaction_type = reaction_type.value  # type: ignore[union-attr]
                session.add(row)

        for bucket, delta in transition.deltas:
            self._adjust(target, bucket, delta)

        session.commit()
        return Ok(transition)

    # =========================================================================
    # Profiles
    # =========================================================================

    @gateway_operation("fetch_profiles")
    async def fetch_profiles(self, user_ids: Sequence[str]) -> GatewayResult[dict[str, Reactor]]:
        user_ids = dedupe(user_ids)
        if not user_ids:
            return Ok({})
        stmt = select(ProfileRow).where(ProfileRow.user_id.in_(user_ids))  # type: ignore[attr-defined]
        return Ok({row.user_id: row.to_domain() for row in self._session().exec(stmt).all()})

    @gateway_operation("upsert_profile")
    async def upsert_profile(
        self, user_id: str, name: str | None, profile_picture: str | None = None
    ) -> GatewayResult[Reactor]:
        """Insert or update a public profile (local gateway only)."""
        session = self._session()
        row = session.get(ProfileRow, user_id)
        if row is None:
            row = ProfileRow(user_id=user_id)
        row.name = name
        row.profile_picture = profile_picture
        session.add(row)
        session.commit()
        session.refresh(row)
        return Ok(row.to_domain())

    # =========================================================================
    # Lead Engagements
    # =========================================================================

    @gateway_operation("insert_lead_engagement")
    async def insert_lead_engagement(
        self, lead_id: str, ca_id: str, viewed_at: datetime
    ) -> GatewayResult[LeadEngagement]:
        session = self._session()
        row = LeadEngagementRow(
            id=str(uuid.uuid4()),
            lead_id=lead_id,
            ca_id=ca_id,
            viewed_at=format_iso(viewed_at),
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return Ok(row.to_domain())

    def _engagement_rows(self, lead_id: str, ca_id: str) -> list[LeadEngagementRow]:
        stmt = (
            select(LeadEngagementRow)
            .where(LeadEngagementRow.lead_id == lead_id, LeadEngagementRow.ca_id == ca_id)
            .order_by(LeadEngagementRow.viewed_at.asc())  # type: ignore[attr-defined]
        )
        return list(self._session().exec(stmt).all())

    @gateway_operation("fetch_lead_engagement")
    async def fetch_lead_engagement(
        self, lead_id: str, ca_id: str
    ) -> GatewayResult[LeadEngagement]:
        rows = self._engagement_rows(lead_id, ca_id)
        if not rows:
            return NotFound(f"engagement of {ca_id} with lead {lead_id}")
        return Ok(rows[0].to_domain())

    @gateway_operation("list_lead_engagements")
    async def list_lead_engagements(self, lead_id: str) -> GatewayResult[list[LeadEngagement]]:
        stmt = (
            select(LeadEngagementRow)
            .where(LeadEngagementRow.lead_id == lead_id)
            .order_by(LeadEngagementRow.viewed_at.asc())  # type: ignore[attr-defined]
        )
        return Ok([row.to_domain() for row in self._session().exec(stmt).all()])

    @gateway_operation("list_engagements_for_ca")
    async def list_engagements_for_ca(self, ca_id: str) -> GatewayResult[list[LeadEngagement]]:
        stmt = (
            select(LeadEngagementRow)
            .where(LeadEngagementRow.ca_id == ca_id)
            .order_by(LeadEngagementRow.viewed_at.desc())  # type: ignore[attr-defined]
        )
        return Ok([row.to_domain() for row in self._session().exec(stmt).all()])

    @gateway_operation("count_distinct_viewers")
    async def count_distinct_viewers(
        self, lead_ids: Sequence[str]
    ) -> GatewayResult[dict[str, int]]:
        lead_ids = dedupe(lead_ids)
        counts = {lead_id: 0 for lead_id in lead_ids}
        if not lead_ids:
            return Ok(counts)

        stmt = (
            select(LeadEngagementRow.lead_id, func.count(func.distinct(LeadEngagementRow.ca_id)))
            .where(LeadEngagementRow.lead_id.in_(lead_ids))  # type: ignore[attr-defined]
            .group_by(LeadEngagementRow.lead_id)
        )
        for lead_id, viewers in self._session().exec(stmt).all():
            counts[lead_id] = viewers
        return Ok(counts)

    @gateway_operation("update_lead_engagement")
    async def update_lead_engagement(
        self, lead_id: str, ca_id: str, changes: dict[str, Any]
    ) -> GatewayResult[LeadEngagement]:
        unknown = set(changes) - ENGAGEMENT_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update engagement fields: {sorted(unknown)}")

        session = self._session()
        rows = self._engagement_rows(lead_id, ca_id)
        if not rows:
            return NotFound(f"engagement of {ca_id} with lead {lead_id}")

        values = {
            key: format_iso(value) if isinstance(value, datetime) else value
            for key, value in changes.items()
        }
        for row in rows:
            for key, value in values.items():
                setattr(row, key, value)
            session.add(row)
        session.commit()
        session.refresh(rows[0])
        return Ok(rows[0].to_domain())


__all__ = ["SQLiteGateway", "gateway_operation"]
