"""
Greenhouse Connector

Imports hired candidates from the Greenhouse Harvest API as employees and
posts screening outcomes back to the candidate's activity feed.

API Documentation: https://developers.greenhouse.io/harvest.html
"""

from typing import Any, Dict, List, Optional
import logging

from wotc_sync.codecs.layouts import resolve_state_abbr
from wotc_sync.connectors.base import (
    AtsConnectorBase,
    ConnectorRegistry,
    ProviderKind,
    ResultPushConnectorBase,
    SyncJobType,
    SyncWindow,
    WotcResult,
)

logger = logging.getLogger("wotc_sync.connectors.greenhouse")

CANDIDATES_URL = "https://harvest.greenhouse.io/v1/candidates"


def _preferred(entries: Optional[List[Dict[str, Any]]], preferred_type: str) -> Optional[str]:
    """Value of the entry with the preferred type, else the first one."""
    if not entries:
        return None
    for entry in entries:
        if entry.get("type") == preferred_type:
            return entry.get("value")
    return entries[0].get("value")


class GreenhouseApiMixin:
    """
    Requests are made on behalf of the employer's Greenhouse organization,
    taken from connection metadata ``on_behalf_of`` and defaulting to the
    employer id.
    """

    async def harvest_headers(self) -> Dict[str, str]:
        headers = await self.auth_headers()
        headers["On-Behalf-Of"] = str(self.metadata.get("on_behalf_of") or self.connection.employer_id)
        return headers


@ConnectorRegistry.register
class GreenhouseConnector(GreenhouseApiMixin, AtsConnectorBase):
    """Greenhouse ATS candidate import."""

    PROVIDER_KIND = ProviderKind.GREENHOUSE
    JOB_TYPE = SyncJobType.GREENHOUSE_CANDIDATES
    DISPLAY_NAME = "Greenhouse"
    WEBHOOK_FIELD = "action"
    WEBHOOK_EVENTS = ("candidate_hired",)

    PAGE_SIZE = 500

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        data = await self._get_json(
            CANDIDATES_URL, params={"per_page": self.PAGE_SIZE}, headers=await self.harvest_headers()
        )
        candidates = data if isinstance(data, list) else data.get("candidates", [])
        logger.info(f"Fetched {len(candidates)} candidates from Greenhouse")
        return candidates

    def transform(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        addresses = raw.get("addresses") or []
        address = addresses[0] if addresses else {}
        return {
            "external_id": str(raw["id"]),
            "first_name": raw.get("first_name"),
            "last_name": raw.get("last_name"),
            "email": _preferred(raw.get("email_addresses"), "personal"),
            "phone": _preferred(raw.get("phone_numbers"), "mobile"),
            "address": address.get("value"),
            "city": address.get("city"),
            "state": resolve_state_abbr(address.get("state")) or None,
            "zip_code": address.get("zip"),
        }


@ConnectorRegistry.register
class GreenhouseResultsConnector(GreenhouseApiMixin, ResultPushConnectorBase):
    """
    Posts each final screening outcome as an admin-only candidate note.

    Harvest attributes notes to ``note_user_id`` from connection metadata
    when one is configured.
    """

    PROVIDER_KIND = ProviderKind.GREENHOUSE
    JOB_TYPE = SyncJobType.GREENHOUSE_RESULTS
    DISPLAY_NAME = "Greenhouse results"

    async def push_result(self, external_id: str, result: WotcResult) -> None:
        headers = await self.harvest_headers()
        headers["Content-Type"] = "application/json"
        await self._request(
            "POST",
            f"{CANDIDATES_URL}/{external_id}/activity_feed/notes",
            headers=headers,
            json={
                "user_id": self.metadata.get("note_user_id"),
                "body": result.summary(),
                "visibility": "admin_only",
            },
        )
        logger.info(f"Posted WOTC result for candidate {external_id} to Greenhouse")
