"""
Base Connector Interface

Abstract base classes and supporting types for payroll and ATS connectors.
Every connector is a strategy registered against the job type it serves and
the provider kind it talks to; the orchestrator never branches on provider
names.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type
import logging

import httpx

from wotc_sync.core.config import settings
from wotc_sync.core.exceptions import ConfigurationError, ProviderConnectionError, RecordError
from wotc_sync.services.retry import RETRYABLE_HTTP_ERRORS, RetryPolicy

logger = logging.getLogger("wotc_sync.connectors")


class ProviderKind(str, Enum):
    """Provider families, resolved from the provider id when a connection is created"""
    GREENHOUSE = "greenhouse"
    BAMBOOHR = "bamboohr"
    ADP = "adp"
    GUSTO = "gusto"
    QUICKBOOKS = "quickbooks"

    @classmethod
    def from_provider_id(cls, provider_id: str) -> "ProviderKind":
        """
        Resolve a provider id such as 'adp-workforce-now' to its kind.

        Raises ConfigurationError when no known kind matches.
        """
        normalized = (provider_id or "").lower().replace("_", "").replace("-", "")
        for kind in cls:
            if kind.value in normalized:
                return kind
        raise ConfigurationError(f"Unknown integration provider: {provider_id}")


class ConnectorCategory(str, Enum):
    PAYROLL = "payroll"
    ATS = "ats"


class SyncJobType(str, Enum):
    GREENHOUSE_CANDIDATES = "greenhouse_candidates"
    GREENHOUSE_RESULTS = "greenhouse_results"
    BAMBOOHR_EMPLOYEES = "bamboohr_employees"
    BAMBOOHR_STATUS = "bamboohr_status"
    ADP_PAYROLL = "adp_payroll"
    GUSTO_PAYROLL = "gusto_payroll"
    QUICKBOOKS_PAYROLL = "quickbooks_payroll"


class SyncCadence(str, Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


@dataclass
class SyncResult:
    """Result of one connector run"""
    success: bool
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    errors: List[str] = field(default_factory=list)
    synced_record_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive date range a payroll connector fetches"""
    start: date
    end: date

    @classmethod
    def lookback(cls, days: int, today: Optional[date] = None) -> "SyncWindow":
        end = today or datetime.now(timezone.utc).date()
        return cls(start=end - timedelta(days=days), end=end)


@dataclass(frozen=True)
class ReconcileOutcome:
    internal_id: int
    created: bool


# Called with (employee_id, employer_id) after an employee's data changed
RecalculationHook = Callable[[int, str], Awaitable[None]]


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        return date.fromisoformat(value[:10])
    raise ValueError(f"Invalid date: {value!r}")


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SyncConnectorBase(ABC):
    """
    Abstract base class for all payroll and ATS connectors.

    ``sync`` fetches provider records and reconciles them one by one. A failed
    fetch ends the run with ``success=False`` and a single error; a failed
    record is counted and reported but leaves the run successful.
    """

    PROVIDER_KIND: ProviderKind
    JOB_TYPE: SyncJobType
    DISPLAY_NAME: str = "Base Connector"
    CATEGORY: ConnectorCategory = ConnectorCategory.PAYROLL
    DEFAULT_CADENCE: SyncCadence = SyncCadence.DAILY
    LOOKBACK_DAYS: Optional[int] = None

    # Webhook payload field and the values of it that trigger this job
    WEBHOOK_FIELD: Optional[str] = None
    WEBHOOK_EVENTS: Tuple[str, ...] = ()

    TOKEN_URL: Optional[str] = None

    def __init__(
        self,
        connection,
        repository,
        http_client: Optional[httpx.AsyncClient] = None,
        recalculate: Optional[RecalculationHook] = None,
        http_retry: Optional[RetryPolicy] = None,
    ):
        """
        Args:
            connection: IntegrationConnection the run belongs to
            repository: SyncRepository bound to this run's session
            http_client: Shared client; a short-lived one is opened per request otherwise
            recalculate: Downstream credit recalculation hook
            http_retry: Backoff for transient network errors
        """
        self.connection = connection
        self.repository = repository
        self._client = http_client
        self._recalculate = recalculate
        self.http_retry = http_retry or RetryPolicy(
            max_attempts=settings.HTTP_MAX_RETRIES,
            base_delay=settings.HTTP_RETRY_BASE_DELAY_SECONDS,
            retry_on=RETRYABLE_HTTP_ERRORS,
            name=f"{self.DISPLAY_NAME} request",
        )

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.connection.provider_metadata or {}

    @classmethod
    def matches_webhook(cls, payload: Dict[str, Any]) -> bool:
        if not cls.WEBHOOK_FIELD or not isinstance(payload, dict):
            return False
        return payload.get(cls.WEBHOOK_FIELD) in cls.WEBHOOK_EVENTS

    # HTTP

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send one provider request with retry on timeouts and connect errors.

        Raises ProviderConnectionError for transport failures and non-2xx responses.
        """
        async def _send() -> httpx.Response:
            if self._client is not None:
                return await self._client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                return await client.request(method, url, **kwargs)

        try:
            response = await self.http_retry.call(_send)
        except httpx.HTTPError as e:
            raise ProviderConnectionError(f"{self.DISPLAY_NAME} unreachable: {e}") from e

        if response.status_code >= 400:
            raise ProviderConnectionError(
                f"{self.DISPLAY_NAME} API error: {response.reason_phrase or response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _get_json(self, url: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", None) or await self.auth_headers()
        response = await self._request("GET", url, headers=headers, **kwargs)
        return response.json()

    # Auth

    async def auth_headers(self) -> Dict[str, str]:
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def get_access_token(self) -> str:
        """Current access token, refreshed first when it has expired."""
        if not self.connection.access_token:
            raise ConfigurationError("No access token available")

        expires_at = self.connection.token_expires_at
        if expires_at is not None and datetime.now(timezone.utc) >= _as_utc(expires_at):
            return await self.refresh_access_token()
        return self.connection.access_token

    def oauth_client_credentials(self) -> Tuple[str, str]:
        prefix = self.PROVIDER_KIND.value.upper()
        return (
            getattr(settings, f"{prefix}_CLIENT_ID", None) or "",
            getattr(settings, f"{prefix}_CLIENT_SECRET", None) or "",
        )

    async def refresh_access_token(self) -> str:
        if not self.TOKEN_URL:
            raise ConfigurationError(f"{self.DISPLAY_NAME} is not configured for OAuth")
        refresh_token = self.connection.refresh_token
        if not refresh_token:
            raise ConfigurationError("No refresh token available")

        client_id, client_secret = self.oauth_client_credentials()
        try:
            response = await self._request(
                "POST",
                self.TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ProviderConnectionError as e:
            raise ProviderConnectionError(f"OAuth refresh failed: {e}", status_code=e.status_code) from e

        data = response.json()
        expires_in = data.get("expires_in")
        expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        await self.repository.store_tokens(
            self.connection,
            data["access_token"],
            data.get("refresh_token") or refresh_token,
            expires_at,
        )
        logger.info(f"Refreshed {self.DISPLAY_NAME} access token for connection {self.connection.id}")
        return data["access_token"]

    # Sync

    @abstractmethod
    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        """Fetch raw provider payloads, one per record."""
        pass

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Map one raw payload to the connector's record shape."""
        return raw

    def prepare_record(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalise one payload, turning a malformed payload into a RecordError.

        Runs inside the per-record loop, so a payload with a missing id or an
        unparseable amount fails only its own record.
        """
        try:
            return self.normalize(raw)
        except KeyError as e:
            raise RecordError(f"Malformed {self.DISPLAY_NAME} record: missing field {e}") from e
        except (IndexError, TypeError, ValueError, ArithmeticError) as e:
            raise RecordError(f"Malformed {self.DISPLAY_NAME} record: {e}") from e

    @abstractmethod
    async def reconcile(self, record: Dict[str, Any]) -> ReconcileOutcome:
        """Apply one normalised record. Raise RecordError to fail just this record."""
        pass

    async def _after_change(self, employee_id: int) -> None:
        if self._recalculate is None:
            return
        try:
            await self._recalculate(employee_id, self.connection.employer_id)
        except Exception as e:
            logger.warning(f"Credit recalculation failed for employee {employee_id}: {e}")

    def _log_context(self) -> Dict[str, Any]:
        return {"connection_id": self.connection.id, "job_type": self.JOB_TYPE.value}

    async def _discard_record_changes(self) -> None:
        # Rollback expires every loaded instance; reload the connection before the next record reads it
        await self.repository.rollback()
        await self.repository.refresh(self.connection)

    async def sync(self, window: Optional[SyncWindow] = None) -> SyncResult:
        result = SyncResult(success=False)

        try:
            records = await self.fetch_records(window)
        except Exception as e:
            logger.error(
                f"{self.DISPLAY_NAME} sync failed for connection {self.connection.id}: {e}",
                extra=self._log_context(),
            )
            result.errors.append(f"{self.DISPLAY_NAME} sync failed: {e}")
            return result

        result.success = True
        for raw in records:
            result.records_processed += 1
            try:
                outcome = await self.reconcile(self.prepare_record(raw))
            except RecordError as e:
                result.records_failed += 1
                result.errors.append(str(e))
                logger.warning(f"{self.DISPLAY_NAME} record failed: {e}")
                continue
            except Exception as e:
                await self._discard_record_changes()
                result.records_failed += 1
                result.errors.append(str(e))
                logger.warning(f"{self.DISPLAY_NAME} record failed: {e}")
                continue

            if outcome.created:
                result.records_created += 1
            else:
                result.records_updated += 1
            result.synced_record_ids.append(outcome.internal_id)

        logger.info(
            f"{self.DISPLAY_NAME} sync for connection {self.connection.id}: "
            f"{result.records_processed} processed, {result.records_created} created, "
            f"{result.records_updated} updated, {result.records_failed} failed",
            extra=self._log_context(),
        )
        return result


class PayrollConnectorBase(SyncConnectorBase):
    """
    Imports hours and wages per pay period.

    Normalised records carry employee_external_id, period_start, period_end,
    hours, wages and an optional reference.
    """

    CATEGORY = ConnectorCategory.PAYROLL
    DEFAULT_CADENCE = SyncCadence.DAILY
    LOOKBACK_DAYS = 30
    MAPPING_TYPE = "employee"

    async def reconcile(self, record: Dict[str, Any]) -> ReconcileOutcome:
        external_id = str(record["employee_external_id"])
        mapping = await self.repository.find_mapping(self.connection.id, external_id, self.MAPPING_TYPE)
        if mapping is None:
            raise RecordError(
                f"Employee mapping not found for {self.DISPLAY_NAME} ID: {external_id}. "
                f"Employee may need to be synced first.",
                external_id=external_id,
            )

        employee = await self.repository.get_employee(mapping.internal_id)
        if employee is None:
            raise RecordError(f"Employee not found for {self.DISPLAY_NAME} ID: {external_id}", external_id)

        try:
            period_start = parse_date(record["period_start"])
            period_end = parse_date(record["period_end"])
            hours = to_decimal(record.get("hours"))
            wages = to_decimal(record.get("wages"))
        except (KeyError, ValueError) as e:
            raise RecordError(f"Invalid payroll record for {self.DISPLAY_NAME} ID {external_id}: {e}", external_id)

        hours_record, created = await self.repository.upsert_hours(
            employee_id=employee.id,
            employer_id=self.connection.employer_id,
            period_start=period_start,
            period_end=period_end,
            hours=hours,
            wages=wages,
            source_reference=record.get("reference"),
        )

        payroll_ref = record.get("reference") or f"{external_id}:{period_start.isoformat()}:{period_end.isoformat()}"
        await self.repository.track_synced_record(
            self.connection.id, payroll_ref, "payroll", hours_record.id, "hours_worked"
        )
        await self.repository.commit()
        await self._after_change(employee.id)
        return ReconcileOutcome(internal_id=hours_record.id, created=created)


# Employee columns a connection's field mappings may populate
MAPPABLE_EMPLOYEE_FIELDS = frozenset({
    "first_name", "last_name", "email", "phone", "address", "city", "state",
    "zip_code", "job_title", "department", "hire_date", "start_date", "status",
})
DATE_FIELDS = frozenset({"hire_date", "start_date"})


def validate_field_mappings(mappings: Dict[str, str]) -> Dict[str, str]:
    """Reject mappings onto columns an import may not write."""
    invalid = sorted(set(mappings.values()) - MAPPABLE_EMPLOYEE_FIELDS)
    if invalid:
        raise ConfigurationError(f"Unmappable employee fields: {', '.join(invalid)}")
    return dict(mappings)


def _lookup(raw: Any, path: str) -> Any:
    """Resolve a dotted path such as 'addresses.0.value'; None when any step is missing."""
    value = raw
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
        if value is None:
            return None
    return value


def apply_field_mappings(raw: Dict[str, Any], mappings: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """
    Employee values taken from a raw payload through a connection's field mappings.

    Mappings run from provider field path to Employee column. Missing provider
    fields are skipped; date columns are parsed.
    """
    values: Dict[str, Any] = {}
    for external, internal in (mappings or {}).items():
        if internal not in MAPPABLE_EMPLOYEE_FIELDS:
            continue
        value = _lookup(raw, external)
        if value is None or value == "":
            continue
        values[internal] = parse_date(value) if internal in DATE_FIELDS else str(value)
    return values


class AtsConnectorBase(SyncConnectorBase):
    """
    Imports hired candidates or directory employees as employees.

    Normalised records carry external_id plus Employee column values. A
    connection's ``field_mappings`` override the built-in mapping for the
    columns they name.
    """

    CATEGORY = ConnectorCategory.ATS
    DEFAULT_CADENCE = SyncCadence.HOURLY
    MAPPING_TYPE = "employee"

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        record = self.transform(raw)
        record.update(apply_field_mappings(raw, self.connection.field_mappings))
        return record

    @abstractmethod
    def transform(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Built-in mapping of one provider payload to external_id plus Employee values."""
        pass

    async def reconcile(self, record: Dict[str, Any]) -> ReconcileOutcome:
        external_id = str(record["external_id"])
        fields = {k: v for k, v in record.items() if k != "external_id"}
        employer_id = self.connection.employer_id

        employee = None
        mapping = await self.repository.find_mapping(self.connection.id, external_id, self.MAPPING_TYPE)
        if mapping is not None:
            employee = await self.repository.get_employee(mapping.internal_id)
        if employee is None and fields.get("email"):
            employee = await self.repository.find_employee_by_email(employer_id, fields["email"])

        if employee is not None:
            await self.repository.update_employee(employee, fields)
            created = False
        else:
            if not fields.get("first_name") and not fields.get("last_name"):
                raise RecordError(f"{self.DISPLAY_NAME} record {external_id} has no name", external_id)
            fields["first_name"] = fields.get("first_name") or ""
            fields["last_name"] = fields.get("last_name") or ""
            fields["status"] = fields.get("status") or "active"
            fields["screening_status"] = "pending"
            employee = await self.repository.create_employee(employer_id, fields)
            created = True

        await self.repository.track_synced_record(
            self.connection.id, external_id, self.MAPPING_TYPE, employee.id, "employee"
        )
        await self.repository.commit()
        await self._after_change(employee.id)
        return ReconcileOutcome(internal_id=employee.id, created=created)


FINAL_SCREENING_STATUSES = ("eligible", "certified", "not_eligible", "denied")
ELIGIBLE_STATUSES = ("eligible", "certified")


@dataclass(frozen=True)
class WotcResult:
    """Screening outcome reported back to the system an employee came from."""
    status: str
    target_group: Optional[str] = None
    certification_number: Optional[str] = None
    credit_amount: Optional[Decimal] = None

    @property
    def eligible(self) -> bool:
        return self.status in ELIGIBLE_STATUSES

    def summary(self) -> str:
        lines = [f"WOTC Status: {'Eligible' if self.eligible else 'Not Eligible'}"]
        if self.target_group:
            lines.append(f"Target Group: {self.target_group}")
        if self.certification_number:
            lines.append(f"Certification: {self.certification_number}")
        if self.credit_amount is not None:
            lines.append(f"Estimated Credit: ${self.credit_amount}")
        return "\n".join(lines)


class ResultPushConnectorBase(SyncConnectorBase):
    """
    Pushes final screening outcomes back to an ATS or HRIS.

    Pending pushes are employees imported through this connection whose
    screening reached a final status not yet pushed. Each push is recorded as
    a ``wotc_result`` synced record keyed ``{external_id}:{status}``, so a
    status change is pushed again and an unchanged one never is.
    """

    CATEGORY = ConnectorCategory.ATS
    DEFAULT_CADENCE = SyncCadence.DAILY
    SOURCE_TYPE = "employee"
    PUSH_TYPE = "wotc_result"

    async def fetch_records(self, window: Optional[SyncWindow]) -> List[Dict[str, Any]]:
        return await self.repository.pending_result_pushes(
            self.connection.id, self.SOURCE_TYPE, self.PUSH_TYPE, FINAL_SCREENING_STATUSES
        )

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        credit = raw.get("credit_amount")
        return {
            "external_id": str(raw["external_id"]),
            "employee_id": raw["employee_id"],
            "result": WotcResult(
                status=raw["screening_status"],
                target_group=raw.get("target_group"),
                certification_number=raw.get("certification_number"),
                credit_amount=to_decimal(credit) if credit is not None else None,
            ),
        }

    @abstractmethod
    async def push_result(self, external_id: str, result: WotcResult) -> None:
        pass

    async def reconcile(self, record: Dict[str, Any]) -> ReconcileOutcome:
        external_id = record["external_id"]
        result: WotcResult = record["result"]
        try:
            await self.push_result(external_id, result)
        except ProviderConnectionError as e:
            raise RecordError(f"Pushing WOTC result for {external_id} failed: {e}", external_id) from e

        await self.repository.track_synced_record(
            self.connection.id, f"{external_id}:{result.status}", self.PUSH_TYPE, record["employee_id"], "employee"
        )
        await self.repository.commit()
        return ReconcileOutcome(internal_id=record["employee_id"], created=True)


class ConnectorRegistry:
    """
    Registry of available connector implementations, keyed by job type.

    Use this to discover and instantiate connectors dynamically.
    """

    _connectors: Dict[SyncJobType, Type[SyncConnectorBase]] = {}

    @classmethod
    def register(cls, connector_class: Type[SyncConnectorBase]) -> Type[SyncConnectorBase]:
        """
        Register a connector class.

        Can be used as a decorator:
            @ConnectorRegistry.register
            class MyConnector(PayrollConnectorBase):
                ...
        """
        cls._connectors[connector_class.JOB_TYPE] = connector_class
        logger.debug(f"Registered connector: {connector_class.JOB_TYPE.value}")
        return connector_class

    @classmethod
    def get(cls, job_type: Any) -> Optional[Type[SyncConnectorBase]]:
        """Get a connector class by job type (enum or string value)."""
        try:
            return cls._connectors.get(SyncJobType(job_type))
        except ValueError:
            return None

    @classmethod
    def require(cls, job_type: Any) -> Type[SyncConnectorBase]:
        connector_class = cls.get(job_type)
        if connector_class is None:
            raise ConfigurationError(f"Unknown sync job type: {job_type}")
        return connector_class

    @classmethod
    def list_all(cls) -> List[SyncJobType]:
        return list(cls._connectors.keys())

    @classmethod
    def for_provider(cls, kind: ProviderKind) -> List[Type[SyncConnectorBase]]:
        return [c for c in cls._connectors.values() if c.PROVIDER_KIND == kind]

    @classmethod
    def for_webhook(cls, kind: ProviderKind, payload: Dict[str, Any]) -> Optional[Type[SyncConnectorBase]]:
        for connector_class in cls.for_provider(kind):
            if connector_class.matches_webhook(payload):
                return connector_class
        return None
