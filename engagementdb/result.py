"""Tagged results returned by persistence gateways.

Gateways decode backend rows into domain records at the boundary and wrap
them in one of three shapes:

- ``Ok(value)``: the operation succeeded
- ``NotFound(what)``: a point lookup matched no row
- ``GatewayFailure(reason, transient, error)``: the backend call failed

Callers either pattern-match on the result or unwrap it into an exception.

Example:
    >>> result = await gateway.fetch_reaction("u1", target)
    >>> match result:
    ...     case Ok(reaction):
    ...         print(reaction.reaction_type)
    ...     case NotFound():
    ...         print("no reaction")
    ...     case GatewayFailure(reason=reason):
    ...         print(f"failed: {reason}")
"""

from dataclasses import dataclass
from typing import Generic, TypeAlias, TypeVar, Union

from engagementdb.errors import GatewayError, NotFoundError, TransientGatewayError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful gateway call carrying a decoded value."""

    value: T


@dataclass(frozen=True, slots=True)
class NotFound:
    """Point lookup that matched no row."""

    what: str = ""


@dataclass(frozen=True, slots=True)
class GatewayFailure:
    """Failed gateway call.

    Attributes:
        reason: Human-readable failure description
        transient: True when a later attempt may succeed
        error: Underlying exception, when one was caught
    """

    reason: str
    transient: bool = False
    error: Exception | None = None

    def to_exception(self) -> GatewayError:
        """Convert the failure into the matching exception."""
        if self.transient:
            return TransientGatewayError(self.reason)
        return GatewayError(self.reason)


GatewayResult: TypeAlias = Union[Ok[T], NotFound, GatewayFailure]


def unwrap(result: "GatewayResult[T]") -> T:
    """Return the value of an Ok result.

    Raises:
        NotFoundError: For NotFound
        GatewayError: For GatewayFailure (TransientGatewayError when transient)
    """
    match result:
        case Ok(value=value):
            return value
        case NotFound(what=what):
            raise NotFoundError(what or "Row not found")
        case GatewayFailure() as failure:
            raise failure.to_exception() from failure.error
    raise TypeError(f"Not a gateway result: {result!r}")


def unwrap_or_none(result: "GatewayResult[T]") -> T | None:
    """Like unwrap(), but NotFound yields None instead of raising."""
    if isinstance(result, NotFound):
        return None
    return unwrap(result)


def is_ok(result: "GatewayResult[T]") -> bool:
    """Check whether a result is Ok."""
    return isinstance(result, Ok)


__all__ = [
    "Ok",
    "NotFound",
    "GatewayFailure",
    "GatewayResult",
    "unwrap",
    "unwrap_or_none",
    "is_ok",
]
