"""
Gusto Connector

Imports processed payrolls from Gusto. Each payroll carries one compensation
entry per employee; these are flattened into one record per employee and
pay period.

API Documentation: https://docs.gusto.com/app-integrations/reference
"""

from typing import Any, Dict, List, Optional
import logging

from wotc_sync.connectors.base import (
    ConnectorRegistry,
    PayrollConnectorBase,
    ProviderKind,
    SyncJobType,
    SyncWindow,
)
from wotc_sync.core.exceptions import ProviderConnectionError

logger = logging.getLogger("wotc_sync.connectors.gusto")


@ConnectorRegistry.register
class GustoConnector(PayrollConnectorBase):
    """Gusto payroll connector."""

    PROVIDER_KIND = ProviderKind.GUSTO
    JOB_TYPE = SyncJobType.GUSTO_PAYROLL
    DISPLAY_NAME = "Gusto"
    WEBHOOK_FIELD = "event_type"
    WEBHOOK_EVENTS = ("payroll.processed",)

    API_BASE_URL = "https://api.gusto.com/v1"
    TOKEN_URL = "https://api.gusto.com/oauth/token"

    async def _company_id(self) -> str:
        company_id = self.metadata.get("company_id")
        if company_id:
            return str(company_id)

        me = await self._get_json(f"{self.API_BASE_URL}/me")
        companies = me.get("companies") or []
        if not companies:
            raise ProviderConnectionError("No Gusto company found")
        return str(companies[0]["uuid"])

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        window = window or SyncWindow.lookback(self.LOOKBACK_DAYS or 30)
        company_id = await self._company_id()
        data = await self._get_json(
            f"{self.API_BASE_URL}/companies/{company_id}/payrolls",
            params={"start_date": window.start.isoformat(), "end_date": window.end.isoformat()},
        )
        payrolls = data if isinstance(data, list) else data.get("payrolls", [])

        # One raw payload per compensation, carrying its payroll's period and id
        records = [
            {
                "payroll_uuid": payroll.get("payroll_uuid"),
                "pay_period": payroll.get("pay_period") or {},
                "compensation": compensation,
            }
            for payroll in payrolls
            for compensation in payroll.get("employee_compensations") or []
        ]

        logger.info(f"Fetched {len(payrolls)} payrolls ({len(records)} compensations) from Gusto")
        return records

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        compensation = raw["compensation"]
        employee_id = str(compensation["employee_id"])
        return {
            "employee_external_id": employee_id,
            "period_start": raw["pay_period"].get("start_date"),
            "period_end": raw["pay_period"].get("end_date"),
            "hours": compensation.get("hours"),
            "wages": compensation.get("gross_pay"),
            "reference": f"{raw['payroll_uuid']}:{employee_id}",
        }
