"""Type definitions for raw hosted-backend rows.

These TypedDicts describe the JSON rows exchanged with the REST gateway before
they are decoded into the domain records of ``engagementdb.models``.

Example:
    >>> from engagementdb.types import ReactionRecord
    >>> row: ReactionRecord = {
    ...     "user_id": "u1",
    ...     "target_type": "post",
    ...     "target_id": 42,
    ...     "reaction_type": "like",
    ...     "created_at": "2024-01-01T00:00:00Z",
    ... }
"""

from typing import NotRequired, Required, TypedDict


class ReactionRecord(TypedDict, total=False):
    """Row of the ``reactions`` table.

    Attributes:
        user_id: Required reacting user
        target_type: Required "post" or "comment"
        target_id: Required target identifier
        reaction_type: Required reaction name
        created_at: Optional creation timestamp
    """

    id: NotRequired[int]
    user_id: Required[str]
    target_type: Required[str]
    target_id: Required[int]
    reaction_type: Required[str]
    created_at: NotRequired[str | None]


class ReactionCountRecord(TypedDict):
    """Row of the ``reaction_counts`` table."""

    target_type: str
    target_id: int
    reaction_type: str
    count: int


class ProfileRecord(TypedDict, total=False):
    """Row of the ``profiles`` table (public fields only)."""

    user_id: Required[str]
    name: NotRequired[str | None]
    profile_picture: NotRequired[str | None]


class LeadEngagementRecord(TypedDict, total=False):
    """Row of the ``lead_engagements`` table."""

    id: Required[str]
    lead_id: Required[str]
    ca_id: Required[str]
    viewed_at: Required[str]
    is_hidden: NotRequired[bool]
    hidden_at: NotRequired[str | None]
    notes: NotRequired[str | None]
    updated_at: NotRequired[str | None]


class AdjustCountParams(TypedDict):
    """Arguments of the counter adjustment procedure."""

    target_type: str
    target_id: int
    reaction_type: str
    increment: bool


class ApplyReactionParams(TypedDict):
    """Arguments of the single-transaction reaction procedure."""

    user_id: str
    target_type: str
    target_id: int
    reaction_type: str


class TransitionRecord(TypedDict):
    """Result of the single-transaction reaction procedure."""

    previous: str | None
    current: str | None


# Row-level filters sent as query parameters
QueryParams = dict[str, str]
