"""
Tests for the payroll connectors (ADP, Gusto, QuickBooks).
"""
import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from wotc_sync.connectors import (
    ADPConnector,
    GustoConnector,
    QuickBooksConnector,
    SyncWindow,
)
from wotc_sync.core.exceptions import ConfigurationError, ProviderConnectionError
from wotc_sync.services.retry import RetryPolicy

WINDOW = SyncWindow(start=date(2025, 1, 1), end=date(2025, 1, 31))


# =============================================================================
# Fixtures
# =============================================================================


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def no_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=1)


def gusto_payrolls_handler(requests):
    compensations = [
        {"employee_id": f"g-{n}", "hours": "40.5", "gross_pay": "600.00"} for n in range(1, 6)
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[{
            "payroll_uuid": "pay-1",
            "pay_period": {"start_date": "2025-01-01", "end_date": "2025-01-14"},
            "employee_compensations": compensations,
        }])

    return handler


@pytest.fixture
def mapped_repository(mock_repository):
    """Every Gusto employee is mapped except g-5."""
    async def find_mapping(connection_id, external_id, external_type):
        if external_id == "g-5":
            return None
        return SimpleNamespace(internal_id=int(external_id.split("-")[1]))

    async def get_employee(employee_id):
        return SimpleNamespace(id=employee_id)

    counter = iter(range(100, 200))

    async def upsert_hours(**kwargs):
        return SimpleNamespace(id=next(counter)), True

    mock_repository.find_mapping.side_effect = find_mapping
    mock_repository.get_employee.side_effect = get_employee
    mock_repository.upsert_hours.side_effect = upsert_hours
    return mock_repository


# =============================================================================
# Shared payroll behaviour (exercised through Gusto)
# =============================================================================


class TestPayrollSync:
    @pytest.mark.asyncio
    async def test_unmapped_employee_fails_only_that_record(self, make_connection, mapped_repository):
        requests = []
        recalculate = AsyncMock()
        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mapped_repository,
            http_client=mock_client(gusto_payrolls_handler(requests)),
            recalculate=recalculate,
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)

        assert result.success is True
        assert result.records_processed == 5
        assert result.records_created == 4
        assert result.records_failed == 1
        assert result.errors == [
            "Employee mapping not found for Gusto ID: g-5. Employee may need to be synced first."
        ]
        assert result.synced_record_ids == [100, 101, 102, 103]
        assert recalculate.await_count == 4
        recalculate.assert_any_await(1, "emp-1")

    @pytest.mark.asyncio
    async def test_hours_written_with_period_and_provenance(self, make_connection, mapped_repository):
        requests = []
        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mapped_repository,
            http_client=mock_client(gusto_payrolls_handler(requests)),
            http_retry=no_retry(),
        )

        await connector.sync(WINDOW)

        first = mapped_repository.upsert_hours.await_args_list[0].kwargs
        assert first["employee_id"] == 1
        assert first["employer_id"] == "emp-1"
        assert first["period_start"] == date(2025, 1, 1)
        assert first["period_end"] == date(2025, 1, 14)
        assert first["hours"] == Decimal("40.5")
        assert first["wages"] == Decimal("600.00")
        assert first["source_reference"] == "pay-1:g-1"

        mapped_repository.track_synced_record.assert_any_await(1, "pay-1:g-1", "payroll", 100, "hours_worked")
        assert mapped_repository.commit.await_count == 4

        request = requests[0]
        assert request.url.path == "/v1/companies/co-1/payrolls"
        assert request.url.params["start_date"] == "2025-01-01"
        assert request.url.params["end_date"] == "2025-01-31"
        assert request.headers["Authorization"] == "Bearer access-token"

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_the_run(self, make_connection, mock_repository):
        def handler(request):
            return httpx.Response(500)

        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mock_repository,
            http_client=mock_client(handler),
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)

        assert result.success is False
        assert result.records_processed == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Gusto sync failed: Gusto API error")

    @pytest.mark.asyncio
    async def test_unexpected_record_error_rolls_back_and_continues(self, make_connection, mapped_repository):
        calls = {"n": 0}

        async def upsert_hours(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("deadlock detected")
            return SimpleNamespace(id=500 + calls["n"]), False

        mapped_repository.upsert_hours.side_effect = upsert_hours
        connection = make_connection(provider_metadata={"company_id": "co-1"})
        connector = GustoConnector(
            connection,
            mapped_repository,
            http_client=mock_client(gusto_payrolls_handler([])),
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)

        assert result.success is True
        assert result.records_failed == 2
        assert result.records_updated == 3
        assert "deadlock detected" in result.errors
        mapped_repository.rollback.assert_awaited_once()
        mapped_repository.refresh.assert_awaited_once_with(connection)

    @pytest.mark.asyncio
    async def test_compensation_without_employee_fails_only_that_record(self, make_connection, mapped_repository):
        def handler(request):
            return httpx.Response(200, json=[{
                "payroll_uuid": "pay-2",
                "pay_period": {"start_date": "2025-01-15", "end_date": "2025-01-28"},
                "employee_compensations": [
                    {"hours": "8", "gross_pay": "120.00"},
                    {"employee_id": "g-1", "hours": "8", "gross_pay": "120.00"},
                ],
            }])

        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mapped_repository,
            http_client=mock_client(handler),
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)

        assert result.success is True
        assert result.records_processed == 2
        assert result.records_failed == 1
        assert result.records_created == 1
        assert result.errors == ["Malformed Gusto record: missing field 'employee_id'"]

    @pytest.mark.asyncio
    async def test_recalculation_failure_does_not_fail_record(self, make_connection, mapped_repository):
        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mapped_repository,
            http_client=mock_client(gusto_payrolls_handler([])),
            recalculate=AsyncMock(side_effect=RuntimeError("calc down")),
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)
        assert result.records_created == 4

    @pytest.mark.asyncio
    async def test_missing_employee_row(self, make_connection, mapped_repository):
        mapped_repository.get_employee.side_effect = None
        mapped_repository.get_employee.return_value = None
        connector = GustoConnector(
            make_connection(provider_metadata={"company_id": "co-1"}),
            mapped_repository,
            http_client=mock_client(gusto_payrolls_handler([])),
            http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)
        assert result.records_failed == 5
        assert "Employee not found for Gusto ID: g-1" in result.errors


class TestGustoCompany:
    @pytest.mark.asyncio
    async def test_company_resolved_from_me(self, make_connection, mock_repository):
        def handler(request):
            if request.url.path == "/v1/me":
                return httpx.Response(200, json={"companies": [{"uuid": "co-9"}]})
            assert request.url.path == "/v1/companies/co-9/payrolls"
            return httpx.Response(200, json=[])

        connector = GustoConnector(
            make_connection(), mock_repository, http_client=mock_client(handler), http_retry=no_retry()
        )
        assert await connector.fetch_records(WINDOW) == []

    @pytest.mark.asyncio
    async def test_no_company(self, make_connection, mock_repository):
        def handler(request):
            return httpx.Response(200, json={"companies": []})

        connector = GustoConnector(
            make_connection(), mock_repository, http_client=mock_client(handler), http_retry=no_retry()
        )
        with pytest.raises(ProviderConnectionError, match="No Gusto company found"):
            await connector.fetch_records(WINDOW)


# =============================================================================
# Tokens
# =============================================================================


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, make_connection, mock_repository):
        seen = []

        def handler(request):
            if request.url.path == "/oauth/token":
                form = dict(pair.split("=") for pair in request.content.decode().split("&"))
                assert form["grant_type"] == "refresh_token"
                assert form["refresh_token"] == "refresh-token"
                return httpx.Response(200, json={"access_token": "new-token", "expires_in": 7200})
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json=[])

        connection = make_connection(
            provider_metadata={"company_id": "co-1"},
            token_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        connector = GustoConnector(
            connection, mock_repository, http_client=mock_client(handler), http_retry=no_retry()
        )

        await connector.fetch_records(WINDOW)

        assert seen == ["Bearer new-token"]
        args = mock_repository.store_tokens.await_args.args
        assert args[0] is connection
        assert args[1] == "new-token"
        assert args[2] == "refresh-token"
        assert args[3] > datetime.now(timezone.utc)

    @pytest.mark.asyncio
    async def test_missing_access_token(self, make_connection, mock_repository):
        connector = GustoConnector(make_connection(access_token=None), mock_repository, http_retry=no_retry())
        with pytest.raises(ConfigurationError, match="No access token available"):
            await connector.get_access_token()

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, make_connection, mock_repository):
        connector = GustoConnector(make_connection(refresh_token=None), mock_repository, http_retry=no_retry())
        with pytest.raises(ConfigurationError, match="No refresh token available"):
            await connector.refresh_access_token()

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, make_connection, mock_repository):
        def handler(request):
            return httpx.Response(401)

        connector = GustoConnector(
            make_connection(), mock_repository, http_client=mock_client(handler), http_retry=no_retry()
        )
        with pytest.raises(ProviderConnectionError, match="OAuth refresh failed"):
            await connector.refresh_access_token()
        mock_repository.store_tokens.assert_not_awaited()


class TestHttpErrors:
    @pytest.mark.asyncio
    async def test_transport_error_becomes_provider_error(self, make_connection, mock_repository):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        connector = ADPConnector(
            make_connection(provider_id="adp"), mock_repository,
            http_client=mock_client(handler), http_retry=no_retry(),
        )
        with pytest.raises(ProviderConnectionError, match="ADP unreachable"):
            await connector.fetch_records(WINDOW)

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, make_connection, mock_repository):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectTimeout("timed out")
            return httpx.Response(200, json={"payrollOutputs": []})

        async def no_sleep(seconds):
            pass

        policy = RetryPolicy(max_attempts=3, base_delay=1, retry_on=(httpx.TimeoutException,), sleep=no_sleep)
        connector = ADPConnector(
            make_connection(provider_id="adp"), mock_repository,
            http_client=mock_client(handler), http_retry=policy,
        )
        assert await connector.fetch_records(WINDOW) == []
        assert len(attempts) == 3


# =============================================================================
# Provider payload mapping
# =============================================================================


class TestADP:
    @pytest.mark.asyncio
    async def test_payroll_outputs_are_summed(self, make_connection, mock_repository):
        def handler(request):
            assert request.url.params["startDate"] == "2025-01-01"
            assert request.url.params["endDate"] == "2025-01-31"
            return httpx.Response(200, json={"payrollOutputs": [{
                "associateOID": "A1",
                "payPeriod": {"startDate": "2025-01-01", "endDate": "2025-01-14"},
                "earnings": [
                    {"earningHours": 40, "earningAmount": {"amountValue": 600}},
                    {"earningHours": "2.5", "earningAmount": {"amountValue": "56.25"}},
                ],
            }]})

        connector = ADPConnector(
            make_connection(provider_id="adp-workforce-now"), mock_repository,
            http_client=mock_client(handler), http_retry=no_retry(),
        )
        records = [connector.normalize(raw) for raw in await connector.fetch_records(WINDOW)]

        assert records == [{
            "employee_external_id": "A1",
            "period_start": "2025-01-01",
            "period_end": "2025-01-14",
            "hours": Decimal("42.5"),
            "wages": Decimal("656.25"),
        }]

    @pytest.mark.asyncio
    async def test_unparseable_amount_fails_only_that_output(self, make_connection, mock_repository):
        def handler(request):
            return httpx.Response(200, json={"payrollOutputs": [
                {
                    "associateOID": "A1",
                    "payPeriod": {"startDate": "2025-01-01", "endDate": "2025-01-14"},
                    "earnings": [{"earningHours": 40, "earningAmount": {"amountValue": 600}}],
                },
                {
                    "associateOID": "A2",
                    "payPeriod": {"startDate": "2025-01-01", "endDate": "2025-01-14"},
                    "earnings": [{"earningHours": 40, "earningAmount": {"amountValue": "abc"}}],
                },
            ]})

        mock_repository.find_mapping.return_value = SimpleNamespace(internal_id=1)
        mock_repository.get_employee.return_value = SimpleNamespace(id=1)
        mock_repository.upsert_hours.return_value = (SimpleNamespace(id=300), True)
        connector = ADPConnector(
            make_connection(provider_id="adp"), mock_repository,
            http_client=mock_client(handler), http_retry=no_retry(),
        )

        result = await connector.sync(WINDOW)

        assert result.success is True
        assert result.records_processed == 2
        assert result.records_created == 1
        assert result.records_failed == 1
        assert result.errors == ["Malformed ADP record: Invalid amount: 'abc'"]
        assert mock_repository.upsert_hours.await_args.kwargs["wages"] == Decimal("600")


class TestQuickBooks:
    def test_query(self):
        assert QuickBooksConnector.build_query(WINDOW) == (
            "SELECT * FROM PayrollCheckDetail "
            "WHERE PayPeriodStart >= '2025-01-01' AND PayPeriodEnd <= '2025-01-31'"
        )

    @pytest.mark.asyncio
    async def test_fetch(self, make_connection, mock_repository):
        def handler(request):
            assert request.url.path == "/v3/company/realm-7/query"
            assert "PayrollCheckDetail" in request.url.params["query"]
            return httpx.Response(200, content=json.dumps({"QueryResponse": {"PayrollCheckDetail": [{
                "Id": "chk-1",
                "Employee": {"value": "55"},
                "PayPeriodStart": "2025-01-01",
                "PayPeriodEnd": "2025-01-14",
                "TotalHours": 38,
                "GrossPay": 570,
            }]}}))

        connector = QuickBooksConnector(
            make_connection(provider_id="quickbooks", provider_metadata={"realm_id": "realm-7"}),
            mock_repository, http_client=mock_client(handler), http_retry=no_retry(),
        )
        record = connector.normalize((await connector.fetch_records(WINDOW))[0])
        assert record["employee_external_id"] == "55"
        assert record["reference"] == "chk-1"
        assert record["hours"] == 38

    @pytest.mark.asyncio
    async def test_missing_realm_fails_run(self, make_connection, mock_repository):
        connector = QuickBooksConnector(
            make_connection(provider_id="quickbooks"), mock_repository, http_retry=no_retry()
        )
        result = await connector.sync(WINDOW)
        assert result.success is False
        assert result.errors == ["QuickBooks sync failed: QuickBooks company realm ID not configured"]
