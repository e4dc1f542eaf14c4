"""REST gateway for the hosted engagement backend.

This module provides an async HTTP/2 client for a PostgREST-style backend with:
- Connection pooling and HTTP/2 multiplexing
- Retry logic with exponential backoff for idempotent reads
- Single-shot writes (a retried insert could double-count)
- Structured error handling that never raises past the gateway boundary
- OpenTelemetry distributed tracing integration

Every public coroutine returns a ``GatewayResult``. Rows are decoded into the
domain records of ``engagementdb.models`` before they leave this module; a
row that fails validation becomes a permanent ``GatewayFailure``.

Example:
    >>> from engagementdb.api import RestGateway
    >>> from engagementdb.models import Target
    >>>
    >>> async with RestGateway() as gateway:
    ...     result = await gateway.fetch_reaction_counts([Target.of("post", 42)])
"""

import functools
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from engagementdb.config import settings
from engagementdb.errors import GatewayError, TransientGatewayError
from engagementdb.logging import logger
from engagementdb.metrics import (
    errors_total,
    gateway_request_duration_seconds,
    gateway_requests_total,
)
from engagementdb.models import (
    ENGAGEMENT_MUTABLE_FIELDS,
    LeadEngagement,
    Reaction,
    ReactionCountRecord,
    ReactionTransition,
    ReactionType,
    Reactor,
    Target,
    TargetType,
    ViewerRecord,
    empty_counts,
)
from engagementdb.result import GatewayFailure, GatewayResult, NotFound, Ok
from engagementdb.telemetry import gateway_span, set_span_error
from engagementdb.types import (
    AdjustCountParams,
    ApplyReactionParams,
    QueryParams,
)
from engagementdb.utils import chunk_list, dedupe, eq_filter, format_iso, in_filter, parse_content_range

BACKEND = "rest"

# Targets or ids per filtered request; keeps query strings well under URL limits
FILTER_CHUNK_SIZE = 100

TABLES = ("reactions", "reaction_counts", "profiles", "lead_engagements")

R = TypeVar("R")


def rest_operation(
    operation: str,
) -> Callable[[Callable[..., Awaitable[GatewayResult[R]]]], Callable[..., Awaitable[GatewayResult[R]]]]:
    """Convert gateway errors into GatewayFailure with tracing and metrics."""

    def decorator(
        fn: Callable[..., Awaitable[GatewayResult[R]]],
    ) -> Callable[..., Awaitable[GatewayResult[R]]]:
        @functools.wraps(fn)
        async def wrapper(self: "RestGateway", *args: Any, **kwargs: Any) -> GatewayResult[R]:
            start = time.perf_counter()
            with gateway_span(BACKEND, operation) as span:
                try:
                    result = await fn(self, *args, **kwargs)
                except GatewayError as exc:
                    result = GatewayFailure(
                        reason=exc.reason,
                        transient=isinstance(exc, TransientGatewayError),
                        error=exc,
                    )
                except ValidationError as exc:
                    result = GatewayFailure(
                        reason=f"Malformed {operation} response: {exc.error_count()} invalid field(s)",
                        error=exc,
                    )

                if isinstance(result, GatewayFailure):
                    set_span_error(span, result.reason)
                    errors_total.labels(
                        error_type=type(result.error).__name__, component="rest"
                    ).inc()
                    logger.warning(f"⚠️ {operation} failed: {result.reason}")

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
# REST Gateway
# =============================================================================


class RestGateway:
    """Async HTTP/2 gateway for the hosted PostgREST-style backend.

    Features:
    - HTTP/2 multiplexing for concurrent requests
    - Connection pooling to reuse TCP connections
    - Reads retried with exponential backoff, writes sent once
    - Server-side procedures for the zero-clamped counter and atomic reaction writes

    Args:
        base_url: REST base URL (defaults to settings.rest_endpoint)
        api_key: Backend API key (defaults to settings.gateway_key)
        timeout: Per-request timeout in seconds (defaults to settings.request_timeout)
        max_attempts: Attempts for reads (defaults to settings.read_retries)
        retry_wait: Tenacity wait strategy between read attempts
        transport: Custom httpx transport (used by tests)

    Example:
        >>> async with RestGateway() as gateway:
        ...     healthy = await gateway.healthcheck()
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        pool_limits: httpx.Limits | None = None,
    ) -> None:
        self._base_url = (base_url or settings.rest_endpoint).rstrip("/")
        self._api_key = api_key or settings.gateway_key
        if not self._api_key:
            raise ValueError("Gateway key is required for the REST gateway")

        self._max_attempts = max_attempts or settings.read_retries
        self._retry_wait = retry_wait or (
            wait_exponential(multiplier=0.5, min=0.5, max=8) + wait_random(0, 0.5)
        )
        self._transport = transport

        self._limits = pool_limits or httpx.Limits(
            max_connections=50,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        )
        request_timeout = timeout or settings.request_timeout
        self._timeout = httpx.Timeout(
            timeout=request_timeout,
            connect=min(request_timeout, 5.0),
        )

        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                limits=self._limits,
                timeout=self._timeout,
                http2=True,
                transport=self._transport,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def initialize(self) -> None:
        await self._ensure_client()
        logger.info(f"✅ REST gateway ready at {self._base_url}")

    async def __aenter__(self) -> "RestGateway":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Perform one HTTP request with error classification.

        Raises:
            TransientGatewayError: For timeouts, network errors, dropped
                connections, HTTP 429 and 5xx
            GatewayError: For other transport errors and any other non-2xx response
        """
        client = await self._ensure_client()
        headers = {"Prefer": prefer} if prefer else None

        try:
            resp = await client.request(method, path, params=params, json=json, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            raise TransientGatewayError(f"Network/timeout error: {exc}") from exc
        except httpx.TransportError as exc:
            raise GatewayError(f"Transport error: {exc}") from exc

        if resp.status_code == 429 or 500 <= resp.status_code < 600:
            raise TransientGatewayError(f"HTTP {resp.status_code} on {method} {path}")

        if resp.status_code >= 400:
            logger.error(f"Non-retryable HTTP {resp.status_code}: {resp.text[:200]}")
            raise GatewayError(f"HTTP {resp.status_code} on {method} {path}: {resp.text[:200]}")

        return resp

    async def _read(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Idempotent request with retry on transient failures."""
        # Create logging bridge for tenacity
        logging_logger = logging.getLogger(__name__)

        @retry(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientGatewayError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )
        async def _runner() -> httpx.Response:
            return await self._send(method, path, params=params, json=json, prefer=prefer)

        return await _runner()

    async def _select(self, table: str, params: QueryParams) -> list[dict[str, Any]]:
        resp = await self._read("GET", table, params=params)
        return self._rows(resp)

    @staticmethod
    def _body(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError(f"Invalid JSON: {exc}") from exc

    @classmethod
    def _rows(cls, resp: httpx.Response) -> list[dict[str, Any]]:
        body = cls._body(resp)
        if body is None:
            return []
        if not isinstance(body, list):
            raise GatewayError(f"Expected a row list, got {type(body).__name__}")
        return body

    @staticmethod
    def _target_params(target: Target) -> QueryParams:
        return {
            "target_type": eq_filter(target.target_type.value),
            "target_id": eq_filter(target.target_id),
        }

    @staticmethod
    def _targets_filter(targets: Sequence[Target]) -> str:
        """Build an ``or`` filter matching any of the given targets."""
        ids_by_type: dict[TargetType, list[int]] = {}
        for target in targets:
            ids_by_type.setdefault(target.target_type, []).append(target.target_id)
        clauses = [
            f"and(target_type.eq.{target_type.value},target_id.{in_filter(ids)})"
            for target_type, ids in ids_by_type.items()
        ]
        return f"({','.join(clauses)})"

    # =========================================================================
    # Housekeeping
    # =========================================================================

    @rest_operation("healthcheck")
    async def healthcheck(self) -> GatewayResult[bool]:
        await self._read("HEAD", "reactions", params={"limit": "1"})
        return Ok(True)

    @rest_operation("get_entity_counts")
    async def get_entity_counts(self) -> GatewayResult[dict[str, int]]:
        """Row counts per table from ``Content-Range`` totals."""
        counts = {}
        for table in TABLES:
            resp = await self._read(
                "HEAD", table, params={"select": "*", "limit": "1"}, prefer="count=exact"
            )
            total = parse_content_range(resp.headers.get("Content-Range"))
            if total is None:
                raise GatewayError(f"Missing row count for {table}")
            counts[table] = total
        return Ok(counts)

    # =========================================================================
    # Reaction Ledger
    # =========================================================================

    @rest_operation("fetch_reaction")
    async def fetch_reaction(self, user_id: str, target: Target) -> GatewayResult[Reaction]:
        rows = await self._select(
            "reactions",
            {"user_id": eq_filter(user_id), **self._target_params(target), "limit": "1"},
        )
        if not rows:
            return NotFound(f"reaction of {user_id} on {target}")
        return Ok(Reaction.model_validate(rows[0]))

    @rest_operation("list_reactions")
    async def list_reactions(self, target: Target) -> GatewayResult[list[Reaction]]:
        rows = await self._select(
            "reactions",
            {**self._target_params(target), "order": "created_at.desc,id.desc"},
        )
        return Ok([Reaction.model_validate(row) for row in rows])

    @rest_operation("list_reactions_for_targets")
    async def list_reactions_for_targets(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, list[Reaction]]]:
        targets = dedupe(targets)
        grouped: dict[Target, list[Reaction]] = {target: [] for target in targets}

        for chunk in chunk_list(targets, FILTER_CHUNK_SIZE):
            rows = await self._select(
                "reactions",
                {"or": self._targets_filter(chunk), "order": "created_at.desc,id.desc"},
            )
            for row in rows:
                reaction = Reaction.model_validate(row)
                if reaction.target in grouped:
                    grouped[reaction.target].append(reaction)
        return Ok(grouped)

    @rest_operation("insert_reaction")
    async def insert_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        resp = await self._send(
            "POST",
            "reactions",
            json={
                "user_id": user_id,
                "target_type": target.target_type.value,
                "target_id": target.target_id,
                "reaction_type": reaction_type.value,
            },
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            raise GatewayError("Insert returned no representation")
        return Ok(Reaction.model_validate(rows[0]))

    @rest_operation("update_reaction")
    async def update_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[Reaction]:
        resp = await self._send(
            "PATCH",
            "reactions",
            params={"user_id": eq_filter(user_id), **self._target_params(target)},
            json={"reaction_type": reaction_type.value},
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            return NotFound(f"reaction of {user_id} on {target}")
        return Ok(Reaction.model_validate(rows[0]))

    @rest_operation("delete_reaction")
    async def delete_reaction(self, user_id: str, target: Target) -> GatewayResult[bool]:
        resp = await self._send(
            "DELETE",
            "reactions",
            params={"user_id": eq_filter(user_id), **self._target_params(target)},
            prefer="return=representation",
        )
        if not self._rows(resp):
            return NotFound(f"reaction of {user_id} on {target}")
        return Ok(True)

    # =========================================================================
    # Counters
    # =========================================================================

    @rest_operation("adjust_reaction_count")
    async def adjust_reaction_count(
        self, target: Target, reaction_type: ReactionType, increment: bool
    ) -> GatewayResult[int]:
        params: AdjustCountParams = {
            "target_type": target.target_type.value,
            "target_id": target.target_id,
            "reaction_type": reaction_type.value,
            "increment": increment,
        }
        resp = await self._send("POST", f"rpc/{settings.reaction_count_rpc}", json=params)
        body = self._body(resp)
        if isinstance(body, dict):
            body = body.get("count")
        if not isinstance(body, int) or isinstance(body, bool):
            raise GatewayError(f"Unexpected counter value: {body!r}")
        return Ok(max(body, 0))

    @rest_operation("fetch_reaction_counts")
    async def fetch_reaction_counts(
        self, targets: Sequence[Target]
    ) -> GatewayResult[dict[Target, dict[ReactionType, int]]]:
        targets = dedupe(targets)
        counts: dict[Target, dict[ReactionType, int]] = {
            target: empty_counts() for target in targets
        }

        for chunk in chunk_list(targets, FILTER_CHUNK_SIZE):
            rows = await self._select(
                "reaction_counts",
                {
                    "select": "target_type,target_id,reaction_type,count",
                    "or": self._targets_filter(chunk),
                },
            )
            for row in rows:
                record = ReactionCountRecord.model_validate(row)
                if record.target in counts:
                    counts[record.target][record.reaction_type] = max(record.count, 0)
        return Ok(counts)

    @rest_operation("apply_reaction")
    async def apply_reaction(
        self, user_id: str, target: Target, reaction_type: ReactionType
    ) -> GatewayResult[ReactionTransition]:
        """Apply a reaction through the single-transaction procedure."""
        params: ApplyReactionParams = {
            "user_id": user_id,
            "target_type": target.target_type.value,
            "target_id": target.target_id,
            "reaction_type": reaction_type.value,
        }
        resp = await self._send("POST", f"rpc/{settings.apply_reaction_rpc}", json=params)
        body = self._body(resp)
        # Set-returning procedures answer with a one-row list
        if isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, dict):
            raise GatewayError(f"Unexpected transition payload: {body!r}")
        return Ok(ReactionTransition.model_validate(body))

    # =========================================================================
    # Profiles
    # =========================================================================

    @rest_operation("fetch_profiles")
    async def fetch_profiles(self, user_ids: Sequence[str]) -> GatewayResult[dict[str, Reactor]]:
        profiles: dict[str, Reactor] = {}
        for chunk in chunk_list(dedupe(user_ids), FILTER_CHUNK_SIZE):
            rows = await self._select(
                "profiles",
                {"select": "user_id,name,profile_picture", "user_id": in_filter(chunk)},
            )
            for row in rows:
                reactor = Reactor.model_validate(row)
                profiles[reactor.user_id] = reactor
        return Ok(profiles)

    # =========================================================================
    # Lead Engagements
    # =========================================================================

    @rest_operation("insert_lead_engagement")
    async def insert_lead_engagement(
        self, lead_id: str, ca_id: str, viewed_at: datetime
    ) -> GatewayResult[LeadEngagement]:
        resp = await self._send(
            "POST",
            "lead_engagements",
            json={"lead_id": lead_id, "ca_id": ca_id, "viewed_at": format_iso(viewed_at)},
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            raise GatewayError("Insert returned no representation")
        return Ok(LeadEngagement.model_validate(rows[0]))

    @rest_operation("fetch_lead_engagement")
    async def fetch_lead_engagement(
        self, lead_id: str, ca_id: str
    ) -> GatewayResult[LeadEngagement]:
        rows = await self._select(
            "lead_engagements",
            {
                "lead_id": eq_filter(lead_id),
                "ca_id": eq_filter(ca_id),
                "order": "viewed_at.asc",
                "limit": "1",
            },
        )
        if not rows:
            return NotFound(f"engagement of {ca_id} with lead {lead_id}")
        return Ok(LeadEngagement.model_validate(rows[0]))

    @rest_operation("list_lead_engagements")
    async def list_lead_engagements(self, lead_id: str) -> GatewayResult[list[LeadEngagement]]:
        rows = await self._select(
            "lead_engagements", {"lead_id": eq_filter(lead_id), "order": "viewed_at.asc"}
        )
        return Ok([LeadEngagement.model_validate(row) for row in rows])

    @rest_operation("list_engagements_for_ca")
    async def list_engagements_for_ca(self, ca_id: str) -> GatewayResult[list[LeadEngagement]]:
        rows = await self._select(
            "lead_engagements", {"ca_id": eq_filter(ca_id), "order": "viewed_at.desc"}
        )
        return Ok([LeadEngagement.model_validate(row) for row in rows])

    @rest_operation("count_distinct_viewers")
    async def count_distinct_viewers(
        self, lead_ids: Sequence[str]
    ) -> GatewayResult[dict[str, int]]:
        """Distinct CA count per lead, computed from (lead_id, ca_id) pairs."""
        lead_ids = dedupe(lead_ids)
        viewers: dict[str, set[str]] = {lead_id: set() for lead_id in lead_ids}

        for chunk in chunk_list(lead_ids, FILTER_CHUNK_SIZE):
            rows = await self._select(
                "lead_engagements", {"select": "lead_id,ca_id", "lead_id": in_filter(chunk)}
            )
            for row in rows:
                record = ViewerRecord.model_validate(row)
                if record.lead_id in viewers:
                    viewers[record.lead_id].add(record.ca_id)
        return Ok({lead_id: len(cas) for lead_id, cas in viewers.items()})

    @rest_operation("update_lead_engagement")
    async def update_lead_engagement(
        self, lead_id: str, ca_id: str, changes: dict[str, Any]
    ) -> GatewayResult[LeadEngagement]:
        unknown = set(changes) - ENGAGEMENT_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update engagement fields: {sorted(unknown)}")

        payload = {
            key: format_iso(value) if isinstance(value, datetime) else value
            for key, value in changes.items()
        }
        resp = await self._send(
            "PATCH",
            "lead_engagements",
            params={
                "lead_id": eq_filter(lead_id),
                "ca_id": eq_filter(ca_id),
                "order": "viewed_at.asc",
            },
            json=payload,
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            return NotFound(f"engagement of {ca_id} with lead {lead_id}")
        return Ok(LeadEngagement.model_validate(rows[0]))


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["RestGateway", "rest_operation", "FILTER_CHUNK_SIZE", "TABLES"]
