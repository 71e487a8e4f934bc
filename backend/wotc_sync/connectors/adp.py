"""
ADP Connector

Imports payroll outputs (hours and earnings per pay period) from ADP
Workforce Now.

API Documentation: https://developers.adp.com/articles/api/payroll-output-v2-api
"""

from typing import Any, Dict, List, Optional
import logging

from wotc_sync.connectors.base import (
    ConnectorRegistry,
    PayrollConnectorBase,
    ProviderKind,
    SyncJobType,
    SyncWindow,
    to_decimal,
)

logger = logging.getLogger("wotc_sync.connectors.adp")


@ConnectorRegistry.register
class ADPConnector(PayrollConnectorBase):
    """ADP Workforce Now payroll connector. Employees are keyed by associateOID."""

    PROVIDER_KIND = ProviderKind.ADP
    JOB_TYPE = SyncJobType.ADP_PAYROLL
    DISPLAY_NAME = "ADP"

    PAYROLL_OUTPUTS_URL = "https://api.adp.com/payroll/v2/payroll-outputs"
    TOKEN_URL = "https://accounts.adp.com/auth/oauth/v2/token"

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        window = window or SyncWindow.lookback(self.LOOKBACK_DAYS or 30)
        data = await self._get_json(
            self.PAYROLL_OUTPUTS_URL,
            params={"startDate": window.start.isoformat(), "endDate": window.end.isoformat()},
        )
        outputs = data.get("payrollOutputs", [])
        logger.info(f"Fetched {len(outputs)} payroll outputs from ADP")
        return outputs

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        earnings = raw.get("earnings") or []
        pay_period = raw.get("payPeriod") or {}
        return {
            "employee_external_id": str(raw["associateOID"]),
            "period_start": pay_period.get("startDate"),
            "period_end": pay_period.get("endDate"),
            "hours": sum((to_decimal(e.get("earningHours")) for e in earnings), to_decimal(0)),
            "wages": sum(
                (to_decimal((e.get("earningAmount") or {}).get("amountValue")) for e in earnings),
                to_decimal(0),
            ),
        }
