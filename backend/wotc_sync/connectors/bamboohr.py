"""
BambooHR Connector

Imports the BambooHR employee directory and writes screening outcomes back
to custom employee fields. Uses API Key authentication (simpler than OAuth2).

API Documentation: https://documentation.bamboohr.com/reference
"""

import base64
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
    parse_date,
)
from wotc_sync.core.exceptions import ConfigurationError

logger = logging.getLogger("wotc_sync.connectors.bamboohr")


class BambooHRApiMixin:
    """
    BambooHR uses the API key as the username and 'x' as the password in
    Basic Auth format. The company subdomain comes from connection metadata.
    """

    API_BASE_URL = "https://api.bamboohr.com/api/gateway.php/{company_domain}/v1"

    @property
    def base_url(self) -> str:
        company_domain = self.metadata.get("company_domain") or self.metadata.get("subdomain")
        if not company_domain:
            raise ConfigurationError("BambooHR connection has no company_domain")
        return self.API_BASE_URL.format(company_domain=company_domain)

    async def auth_headers(self) -> Dict[str, str]:
        api_key = self.connection.api_key or self.connection.access_token
        if not api_key:
            raise ConfigurationError("No API key available")
        auth_bytes = base64.b64encode(f"{api_key}:x".encode()).decode()
        return {"Authorization": f"Basic {auth_bytes}", "Accept": "application/json"}


@ConnectorRegistry.register
class BambooHRConnector(BambooHRApiMixin, AtsConnectorBase):
    """BambooHR HRIS directory import."""

    PROVIDER_KIND = ProviderKind.BAMBOOHR
    JOB_TYPE = SyncJobType.BAMBOOHR_EMPLOYEES
    DISPLAY_NAME = "BambooHR"
    WEBHOOK_FIELD = "event"
    WEBHOOK_EVENTS = ("employee_added",)

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        data = await self._get_json(f"{self.base_url}/employees/directory")
        employees = data.get("employees", [])
        logger.info(f"Fetched {len(employees)} employees from BambooHR")
        return employees

    def transform(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        # BambooHR reports an unset hire date as 0000-00-00
        hire_date = raw.get("hireDate")
        try:
            hire_date = parse_date(hire_date) if hire_date else None
        except ValueError:
            hire_date = None
        return {
            "external_id": str(raw["id"]),
            "first_name": raw.get("firstName"),
            "last_name": raw.get("lastName"),
            "email": raw.get("workEmail") or raw.get("email"),
            "phone": raw.get("mobilePhone") or raw.get("homePhone"),
            "address": raw.get("address1"),
            "city": raw.get("city"),
            "state": resolve_state_abbr(raw.get("state")) or None,
            "zip_code": raw.get("zipcode"),
            "department": raw.get("department"),
            "job_title": raw.get("jobTitle"),
            "hire_date": hire_date,
        }


@ConnectorRegistry.register
class BambooHRStatusConnector(BambooHRApiMixin, ResultPushConnectorBase):
    """
    Writes screening outcomes to the employer's WOTC custom fields
    (wotcEligible, wotcTargetGroup, wotcCertification, wotcCreditAmount).
    """

    PROVIDER_KIND = ProviderKind.BAMBOOHR
    JOB_TYPE = SyncJobType.BAMBOOHR_STATUS
    DISPLAY_NAME = "BambooHR status"

    async def push_result(self, external_id: str, result: WotcResult) -> None:
        headers = await self.auth_headers()
        headers["Content-Type"] = "application/json"
        await self._request(
            "POST",
            f"{self.base_url}/employees/{external_id}",
            headers=headers,
            json={
                "wotcEligible": "Yes" if result.eligible else "No",
                "wotcTargetGroup": result.target_group or "",
                "wotcCertification": result.certification_number or "",
                "wotcCreditAmount": float(result.credit_amount) if result.credit_amount is not None else 0,
            },
        )
        logger.info(f"Updated WOTC status for BambooHR employee {external_id}")
