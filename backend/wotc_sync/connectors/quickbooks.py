"""
QuickBooks Connector

Imports payroll check details from QuickBooks Online Payroll through the
query endpoint.

API Documentation: https://developer.intuit.com/app/developer/qbo/docs/api/accounting
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
from wotc_sync.core.exceptions import ConfigurationError

logger = logging.getLogger("wotc_sync.connectors.quickbooks")


@ConnectorRegistry.register
class QuickBooksConnector(PayrollConnectorBase):
    """QuickBooks payroll connector. The company realm id lives in connection metadata."""

    PROVIDER_KIND = ProviderKind.QUICKBOOKS
    JOB_TYPE = SyncJobType.QUICKBOOKS_PAYROLL
    DISPLAY_NAME = "QuickBooks"

    API_BASE_URL = "https://quickbooks.api.intuit.com/v3/company/{realm_id}"
    TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

    @property
    def realm_id(self) -> str:
        realm_id = self.metadata.get("realm_id")
        if not realm_id:
            raise ConfigurationError("QuickBooks company realm ID not configured")
        return str(realm_id)

    @staticmethod
    def build_query(window: SyncWindow) -> str:
        return (
            "SELECT * FROM PayrollCheckDetail "
            f"WHERE PayPeriodStart >= '{window.start.isoformat()}' "
            f"AND PayPeriodEnd <= '{window.end.isoformat()}'"
        )

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        window = window or SyncWindow.lookback(self.LOOKBACK_DAYS or 30)
        url = f"{self.API_BASE_URL.format(realm_id=self.realm_id)}/query"
        data = await self._get_json(url, params={"query": self.build_query(window)})

        items = (data.get("QueryResponse") or {}).get("PayrollCheckDetail", [])
        logger.info(f"Fetched {len(items)} payroll check details from QuickBooks")
        return items

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "employee_external_id": str(raw["Employee"]["value"]),
            "period_start": raw.get("PayPeriodStart"),
            "period_end": raw.get("PayPeriodEnd"),
            "hours": raw.get("TotalHours"),
            "wages": raw.get("GrossPay"),
            "reference": raw.get("Id"),
        }
