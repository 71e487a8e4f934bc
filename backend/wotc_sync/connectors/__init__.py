"""
Payroll and ATS Connectors Package

Connectors pull hours/wages from payroll providers and hired candidates or
employees from applicant tracking systems, and reconcile them into the
employee and hours tables. Result connectors push final screening outcomes
back to the ATS or HRIS an employee was imported from.

Payroll: ADP Workforce Now, Gusto, QuickBooks Online Payroll
ATS/HRIS: Greenhouse, BambooHR
"""

from wotc_sync.connectors.base import (
    SyncConnectorBase,
    PayrollConnectorBase,
    AtsConnectorBase,
    ResultPushConnectorBase,
    ConnectorRegistry,
    ProviderKind,
    SyncCadence,
    SyncJobType,
    SyncResult,
    SyncWindow,
    WotcResult,
)

# Import concrete implementations (they auto-register via decorator)
from wotc_sync.connectors.adp import ADPConnector
from wotc_sync.connectors.gusto import GustoConnector
from wotc_sync.connectors.quickbooks import QuickBooksConnector
from wotc_sync.connectors.bamboohr import BambooHRConnector, BambooHRStatusConnector
from wotc_sync.connectors.greenhouse import GreenhouseConnector, GreenhouseResultsConnector

__all__ = [
    # Base classes
    "SyncConnectorBase",
    "PayrollConnectorBase",
    "AtsConnectorBase",
    "ResultPushConnectorBase",
    "ConnectorRegistry",
    "ProviderKind",
    "SyncCadence",
    "SyncJobType",
    "SyncResult",
    "SyncWindow",
    "WotcResult",
    # Concrete implementations
    "ADPConnector",
    "GustoConnector",
    "QuickBooksConnector",
    "BambooHRConnector",
    "BambooHRStatusConnector",
    "GreenhouseConnector",
    "GreenhouseResultsConnector",
]
