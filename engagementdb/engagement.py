"""Engagement recorder: which CAs have viewed which customer leads.

Recording a view is fire-and-forget telemetry for the caller, so
``record_engagement`` never raises: failures are logged and returned as a
``GatewayFailure``. Viewer counts count distinct CAs, so they stay correct even
if duplicate (lead, CA) rows slip in.
"""

from collections.abc import Sequence

from engagementdb.config import settings
from engagementdb.interfaces import IPersistenceGateway
from engagementdb.logging import logger
from engagementdb.metrics import errors_total, lead_views_total
from engagementdb.models import LeadEngagement
from engagementdb.result import GatewayFailure, GatewayResult, NotFound, Ok, unwrap
from engagementdb.utils import utc_now


class EngagementRecorder:
    """Records lead views and manages CA-private engagement state.

    Args:
        gateway: Any IPersistenceGateway implementation
        enforce_unique: Look up (lead, CA) before inserting
            (defaults to settings.enforce_unique_engagement)
    """

    def __init__(self, gateway: IPersistenceGateway, enforce_unique: bool | None = None):
        self.gateway = gateway
        self.enforce_unique = (
            settings.enforce_unique_engagement if enforce_unique is None else enforce_unique
        )

    async def record_engagement(self, lead_id: str, ca_id: str) -> GatewayResult[LeadEngagement]:
        """Record that a CA viewed a lead.

        With uniqueness enforced, a repeat view returns the existing engagement.
        """
        if self.enforce_unique:
            existing = await self.gateway.fetch_lead_engagement(lead_id, ca_id)
            if isinstance(existing, Ok):
                lead_views_total.labels(status="duplicate").inc()
                logger.debug(f"Lead {lead_id} already viewed by {ca_id}")
                return existing
            if isinstance(existing, GatewayFailure):
                return self._failed(lead_id, ca_id, existing)

        result = await self.gateway.insert_lead_engagement(lead_id, ca_id, utc_now())
        if isinstance(result, GatewayFailure):
            return self._failed(lead_id, ca_id, result)

        lead_views_total.labels(status="recorded").inc()
        logger.info(f"👀 Recorded view of lead {lead_id} by {ca_id}")
        return result

    def _failed(self, lead_id: str, ca_id: str, failure: GatewayFailure) -> GatewayFailure:
        lead_views_total.labels(status="failed").inc()
        errors_total.labels(
            error_type=type(failure.error).__name__ if failure.error else "GatewayFailure",
            component="engagement",
        ).inc()
        logger.error(f"❌ Failed to record view of lead {lead_id} by {ca_id}: {failure.reason}")
        return failure

    async def count_distinct_viewers(self, lead_id: str) -> int:
        return (await self.count_distinct_viewers_batch([lead_id]))[lead_id]

    async def count_distinct_viewers_batch(self, lead_ids: Sequence[str]) -> dict[str, int]:
        """Distinct viewer count per lead; unseen leads report 0."""
        if not lead_ids:
            return {}
        counts = unwrap(await self.gateway.count_distinct_viewers(lead_ids))
        return {lead_id: counts.get(lead_id, 0) for lead_id in lead_ids}

    async def list_engagements(self, lead_id: str) -> list[LeadEngagement]:
        return unwrap(await self.gateway.list_lead_engagements(lead_id))

    async def hide_lead(self, lead_id: str, ca_id: str) -> LeadEngagement:
        """Hide a lead from the CA's dashboard.

        Raises:
            NotFoundError: If the CA never viewed the lead
        """
        now = utc_now()
        return await self._update(
            lead_id, ca_id, {"is_hidden": True, "hidden_at": now, "updated_at": now}
        )

    async def unhide_lead(self, lead_id: str, ca_id: str) -> LeadEngagement:
        return await self._update(
            lead_id, ca_id, {"is_hidden": False, "hidden_at": None, "updated_at": utc_now()}
        )

    async def update_notes(self, lead_id: str, ca_id: str, notes: str | None) -> LeadEngagement:
        return await self._update(lead_id, ca_id, {"notes": notes, "updated_at": utc_now()})

    async def hidden_lead_ids(self, ca_id: str) -> set[str]:
        """Leads the CA has hidden."""
        engagements = unwrap(await self.gateway.list_engagements_for_ca(ca_id))
        return {engagement.lead_id for engagement in engagements if engagement.is_hidden}

    async def _update(self, lead_id: str, ca_id: str, changes: dict) -> LeadEngagement:
        result = await self.gateway.update_lead_engagement(lead_id, ca_id, changes)
        if isinstance(result, NotFound):
            logger.warning(f"No engagement of {ca_id} with lead {lead_id} to update")
        return unwrap(result)


__all__ = ["EngagementRecorder"]
