"""Data models for EngagementDB.

This module defines both Pydantic domain models (decoded at the gateway
boundary) and SQLModel ORM models (for the SQLite gateway).

Models are organized into three sections:
1. Enumerations shared by every layer
2. Pydantic domain records
3. SQLModel tables for database persistence
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from engagementdb.utils import parse_datetime

# =============================================================================
# Section 1: Enumerations
# =============================================================================


class TargetType(StrEnum):
    """Kinds of content a reaction can attach to."""

    POST = "post"
    COMMENT = "comment"


class ReactionType(StrEnum):
    """Affective responses offered by the reaction picker."""

    LIKE = "like"
    LOVE = "love"
    LAUGH = "laugh"
    SAD = "sad"
    ANGRY = "angry"


class TransitionKind(StrEnum):
    """Which branch of the three-way reaction write was taken."""

    INSERTED = "inserted"
    CHANGED = "changed"
    REMOVED = "removed"


def empty_counts() -> dict[ReactionType, int]:
    """Return a counter mapping with every reaction type at zero."""
    return {reaction_type: 0 for reaction_type in ReactionType}


# CA-private engagement fields a caller may change
ENGAGEMENT_MUTABLE_FIELDS = frozenset({"is_hidden", "hidden_at", "notes", "updated_at"})


# =============================================================================
# Section 2: Pydantic Domain Records
# =============================================================================


class Target(BaseModel):
    """A post or comment, identified by (type, id).

    Targets are immutable and hashable so they can key count mappings.
    """

    model_config = ConfigDict(frozen=True)

    target_type: TargetType
    target_id: int

    @classmethod
    def of(cls, target_type: TargetType | str, target_id: int) -> "Target":
        return cls(target_type=TargetType(target_type), target_id=target_id)

    def __str__(self) -> str:
        return f"{self.target_type.value}:{self.target_id}"


class Reaction(BaseModel):
    """One user's reaction to one target.

    Attributes:
        user_id: Reacting user
        target_type: Post or comment
        target_id: Target identifier
        reaction_type: Chosen reaction
        created_at: When the reaction row was created (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str
    target_type: TargetType
    target_id: int
    reaction_type: ReactionType
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @property
    def target(self) -> Target:
        return Target(target_type=self.target_type, target_id=self.target_id)


class ReactionTransition(BaseModel):
    """Outcome of one ledger write.

    Attributes:
        previous: Reaction held before the write (None if there was none)
        current: Reaction held after the write (None after a toggle-off)
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    previous: Optional[ReactionType] = None
    current: Optional[ReactionType] = None

    @property
    def kind(self) -> TransitionKind:
        if self.previous is None:
            return TransitionKind.INSERTED
        if self.current is None:
            return TransitionKind.REMOVED
        return TransitionKind.CHANGED

    @property
    def deltas(self) -> list[tuple[ReactionType, int]]:
        """Counter adjustments this transition requires, decrement first."""
        adjustments: list[tuple[ReactionType, int]] = []
        if self.previous is not None:
            adjustments.append((self.previous, -1))
        if self.current is not None:
            adjustments.append((self.current, 1))
        return adjustments

    @classmethod
    def resolve(
        cls, previous: Optional[ReactionType], requested: ReactionType
    ) -> "ReactionTransition":
        """Apply the toggle rule: re-selecting the held reaction clears it."""
        if previous == requested:
            return cls(previous=previous, current=None)
        return cls(previous=previous, current=requested)


class Reactor(BaseModel):
    """Public profile of a reacting user."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    name: str = "Unknown"
    profile_picture: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Optional[str]) -> str:
        return v or "Unknown"


class ReactorEntry(BaseModel):
    """One line of the "who reacted" list."""

    user_id: str
    name: str
    profile_picture: Optional[str] = None
    reaction_type: ReactionType
    created_at: Optional[datetime] = None


class TargetCounts(BaseModel):
    """Aggregated counts for one target.

    Attributes:
        target: The counted target
        counts: Count per reaction type (every type present)
        reactors: First distinct reactor display names, newest first
    """

    target: Target
    counts: dict[ReactionType, int] = PydanticField(default_factory=empty_counts)
    reactors: list[str] = PydanticField(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def top_types(self, limit: int = 3) -> list[ReactionType]:
        """Most frequent reaction types with a non-zero count."""
        ranked = sorted(
            (item for item in self.counts.items() if item[1] > 0),
            key=lambda item: item[1],
            reverse=True,
        )
        return [reaction_type for reaction_type, _ in ranked[:limit]]


class ReactionSummary(BaseModel):
    """What a reaction control shows to one user."""

    target: Target
    counts: dict[ReactionType, int] = PydanticField(default_factory=empty_counts)
    my_reaction: Optional[ReactionType] = None
    reactors: list[str] = PydanticField(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class LeadEngagement(BaseModel):
    """A CA's recorded view of a customer lead.

    Attributes:
        id: Engagement identifier
        lead_id: Viewed lead
        ca_id: Viewing CA
        viewed_at: First view timestamp (UTC)
        is_hidden: Whether the CA hid the lead from their dashboard
        hidden_at: When the lead was hidden
        notes: CA-private notes about the lead
        updated_at: Last change to the CA-private fields
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    lead_id: str
    ca_id: str
    viewed_at: Optional[datetime] = None
    is_hidden: bool = False
    hidden_at: Optional[datetime] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("viewed_at", "hidden_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("is_hidden", mode="before")
    @classmethod
    def _coerce_hidden(cls, v: Optional[bool]) -> bool:
        return bool(v)


class ReactionCountRecord(BaseModel):
    """One counter bucket as returned by the hosted backend."""

    model_config = ConfigDict(extra="ignore")

    target_type: TargetType
    target_id: int
    reaction_type: ReactionType
    count: int

    @property
    def target(self) -> Target:
        return Target(target_type=self.target_type, target_id=self.target_id)


class ViewerRecord(BaseModel):
    """A (lead, CA) pair projected from the engagement log."""

    model_config = ConfigDict(extra="ignore")

    lead_id: str
    ca_id: str


# =============================================================================
# Section 3: SQLModel Tables for Database Persistence
# =============================================================================


class ReactionRow(SQLModel, table=True):
    """Reaction ledger table: at most one row per (user, target)."""

    __tablename__ = "reactions"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_reaction_user_target"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    target_type: str = Field(index=True)
    target_id: int = Field(index=True)
    reaction_type: str
    created_at: str = Field(index=True)

    def to_domain(self) -> Reaction:
        return Reaction.model_validate(self.model_dump())


class ReactionCountRow(SQLModel, table=True):
    """Denormalized counter bucket for one (target, reaction type)."""

    __tablename__ = "reaction_counts"  # type: ignore[assignment]

    target_type: str = Field(primary_key=True)
    target_id: int = Field(primary_key=True)
    reaction_type: str = Field(primary_key=True)
    count: int = Field(default=0, ge=0)


class ProfileRow(SQLModel, table=True):
    """Public profile fields used for reactor display names."""

    __tablename__ = "profiles"  # type: ignore[assignment]

    user_id: str = Field(primary_key=True)
    name: Optional[str] = None
    profile_picture: Optional[str] = None

    def to_domain(self) -> Reactor:
        return Reactor.model_validate(self.model_dump())


class LeadEngagementRow(SQLModel, table=True):
    """Append-mostly log of CA lead views plus CA-private state."""

    __tablename__ = "lead_engagements"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    lead_id: str = Field(index=True)
    ca_id: str = Field(index=True)
    viewed_at: str
    is_hidden: bool = False
    hidden_at: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[str] = None

    def to_domain(self) -> LeadEngagement:
        return LeadEngagement.model_validate(self.model_dump())
