"""Exception hierarchy for EngagementDB."""


class EngagementDBError(Exception):
    """Base class for all EngagementDB errors."""


class GatewayError(EngagementDBError):
    """Permanent persistence gateway failure.

    Raised for errors that should not be retried:
    - Constraint violations (e.g., a duplicate reaction row)
    - Authentication or permission failures
    - Malformed rows returned by the backend
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TransientGatewayError(GatewayError):
    """Retryable network/HTTP layer failures.

    Raised for errors where a later attempt may succeed:
    - Network timeouts
    - Connection errors
    - HTTP 429 (rate limit)
    - HTTP 5xx (server errors)
    """


class NotFoundError(EngagementDBError):
    """A row required by the operation does not exist."""


class MutationPendingError(EngagementDBError):
    """A reaction change is already in flight for this target."""
