"""
Tests for sync job execution: retry, logging and connection bookkeeping.
"""
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from wotc_sync.connectors import ConnectorRegistry, ProviderKind, SyncJobType, SyncResult, SyncWindow
from wotc_sync.connectors.base import SyncConnectorBase
from wotc_sync.core.exceptions import ConfigurationError, ResourceNotFoundError
from wotc_sync.services.orchestrator import SyncJobConfig, SyncJobResult, SyncOrchestrator


class SteppingClock:
    """Clock whose sleep records the delay and moves time forward immediately."""

    def __init__(self):
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.sleeps = []

    def now(self):
        return self.current

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def scripted_connector(monkeypatch):
    """Replace the Gusto connector with one that replays scripted outcomes."""

    class ScriptedConnector(SyncConnectorBase):
        PROVIDER_KIND = ProviderKind.GUSTO
        JOB_TYPE = SyncJobType.GUSTO_PAYROLL
        DISPLAY_NAME = "Scripted"
        LOOKBACK_DAYS = 30

        script = []
        windows = []
        instances = []

        async def fetch_records(self, window):
            return []

        async def reconcile(self, record):
            raise NotImplementedError

        async def sync(self, window=None):
            type(self).instances.append(self)
            type(self).windows.append(window)
            outcome = type(self).script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    monkeypatch.setitem(ConnectorRegistry._connectors, SyncJobType.GUSTO_PAYROLL, ScriptedConnector)
    return ScriptedConnector


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def orchestrator(repository_factory, clock):
    return SyncOrchestrator(repository_factory=repository_factory, clock=clock)


def ok(**counts):
    return SyncResult(success=True, **counts)


def failed(*errors):
    return SyncResult(success=False, errors=list(errors))


def job(**overrides):
    values = {
        "connection_id": 1,
        "employer_id": "emp-1",
        "job_type": SyncJobType.GUSTO_PAYROLL,
        "retry_attempts": 2,
        "retry_delay": 5,
    }
    values.update(overrides)
    return SyncJobConfig(**values)


class TestSyncJobConfig:
    def test_defaults_from_settings(self):
        config = SyncJobConfig(connection_id=3, employer_id="emp-3", job_type="adp_payroll")
        assert config.job_type is SyncJobType.ADP_PAYROLL
        assert config.cadence.value == "manual"
        assert config.enabled is True
        assert config.retry_attempts == 3
        assert config.retry_delay == 5.0
        assert config.key == (3, SyncJobType.ADP_PAYROLL)

    def test_unknown_job_type_kept_for_execution_to_reject(self):
        config = SyncJobConfig(connection_id=3, employer_id="emp-3", job_type="workday_payroll")
        assert config.job_type == "workday_payroll"


class TestExecuteSyncJob:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(
        self, orchestrator, scripted_connector, mock_repository, connection, clock
    ):
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [ok(records_processed=3, records_created=2, records_updated=1)]

        result = await orchestrator.execute_sync_job(job())

        assert isinstance(result, SyncJobResult)
        assert result.success is True
        assert result.retry_count == 0
        assert result.job_id == "1-gusto_payroll-1735689600000"
        assert clock.sleeps == []

        log = mock_repository.add_sync_log.await_args.kwargs
        assert log["connection_id"] == 1
        assert log["employer_id"] == "emp-1"
        assert log["provider_id"] == "gusto"
        assert log["job_type"] == "gusto_payroll"
        assert log["status"] == "completed"
        assert log["records_processed"] == 3
        assert log["records_created"] == 2
        assert log["records_updated"] == 1
        assert log["retry_count"] == 0
        assert log["error_message"] is None
        assert log["error_details"] is None
        mock_repository.record_sync_outcome.assert_awaited_once_with(
            connection, "completed", result.completed_at, None
        )

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(
        self, orchestrator, scripted_connector, mock_repository, connection, clock
    ):
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [failed("timeout"), failed("timeout"), ok(records_processed=1)]

        result = await orchestrator.execute_sync_job(job())

        assert result.success is True
        assert result.retry_count == 2
        assert clock.sleeps == [5, 10]
        assert len(scripted_connector.instances) == 3
        assert result.completed_at - result.started_at == timedelta(seconds=15)
        assert mock_repository.add_sync_log.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_record_failure(
        self, orchestrator, scripted_connector, mock_repository, connection, clock
    ):
        mock_repository.get_connection.return_value = connection
        errors = [f"error {n}" for n in range(7)]
        scripted_connector.script = [failed("first"), failed("second"), failed(*errors)]

        result = await orchestrator.execute_sync_job(job())

        assert result.success is False
        assert result.retry_count == 2
        assert clock.sleeps == [5, 10]

        expected_message = "; ".join(errors[:5])
        log = mock_repository.add_sync_log.await_args.kwargs
        assert log["status"] == "failed"
        assert log["retry_count"] == 2
        assert log["error_message"] == expected_message
        assert log["error_details"] == {"errors": errors}
        mock_repository.record_sync_outcome.assert_awaited_once_with(
            connection, "failed", result.completed_at, expected_message
        )

    @pytest.mark.asyncio
    async def test_raised_exception_is_retried_and_reported(
        self, orchestrator, scripted_connector, mock_repository, connection, clock
    ):
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [RuntimeError("boom")]

        result = await orchestrator.execute_sync_job(job(retry_attempts=0))

        assert result.success is False
        assert result.retry_count == 0
        assert result.result.errors == ["RuntimeError: boom"]
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_payroll_window_looks_back_from_start(
        self, orchestrator, scripted_connector, mock_repository, connection
    ):
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [ok()]

        await orchestrator.execute_sync_job(job())

        assert scripted_connector.windows == [SyncWindow(start=date(2024, 12, 2), end=date(2025, 1, 1))]

    @pytest.mark.asyncio
    async def test_collaborators_passed_to_connector(
        self, repository_factory, clock, scripted_connector, mock_repository, connection
    ):
        async def recalculate(employee_id, employer_id):
            pass

        orchestrator = SyncOrchestrator(repository_factory=repository_factory, clock=clock, recalculate=recalculate)
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [ok()]

        await orchestrator.execute_sync_job(job())

        instance = scripted_connector.instances[0]
        assert instance.connection is connection
        assert instance.repository is mock_repository
        assert instance._recalculate is recalculate

    @pytest.mark.asyncio
    async def test_backoff_sleeps_hold_no_repository_scope(
        self, clock, scripted_connector, mock_repository, connection
    ):
        events = []
        open_scopes = []

        @asynccontextmanager
        async def tracking_factory():
            open_scopes.append(1)
            events.append("open")
            try:
                yield mock_repository
            finally:
                open_scopes.pop()

        class ScopeCheckingClock(SteppingClock):
            async def sleep(self, seconds):
                events.append(("sleep", len(open_scopes)))
                await super().sleep(seconds)

        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [failed("timeout"), failed("timeout"), ok()]
        orchestrator = SyncOrchestrator(repository_factory=tracking_factory, clock=ScopeCheckingClock())

        await orchestrator.execute_sync_job(job())

        # lookup, three attempts, bookkeeping
        assert events.count("open") == 5
        assert [e for e in events if e != "open"] == [("sleep", 0), ("sleep", 0)]
        assert open_scopes == []

    @pytest.mark.asyncio
    async def test_job_metrics_recorded(self, orchestrator, scripted_connector, mock_repository, connection):
        labels = {"job_type": "gusto_payroll", "provider": "gusto", "status": "completed"}
        before = REGISTRY.get_sample_value("wotc_sync_jobs_total", labels) or 0
        created_before = REGISTRY.get_sample_value(
            "wotc_sync_records_total", {"job_type": "gusto_payroll", "outcome": "created"}
        ) or 0
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [ok(records_processed=2, records_created=2)]

        await orchestrator.execute_sync_job(job())

        assert REGISTRY.get_sample_value("wotc_sync_jobs_total", labels) == before + 1
        assert REGISTRY.get_sample_value(
            "wotc_sync_records_total", {"job_type": "gusto_payroll", "outcome": "created"}
        ) == created_before + 2

    @pytest.mark.asyncio
    async def test_missing_connection(self, orchestrator, scripted_connector, mock_repository):
        mock_repository.get_connection.return_value = None

        with pytest.raises(ResourceNotFoundError, match="Integration connection 1 not found"):
            await orchestrator.execute_sync_job(job())

        assert scripted_connector.instances == []
        mock_repository.add_sync_log.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_job_type(self, orchestrator, mock_repository):
        with pytest.raises(ConfigurationError, match="Unknown sync job type"):
            await orchestrator.execute_sync_job(job(job_type="workday_payroll"))

        mock_repository.get_connection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_to_dict(self, orchestrator, scripted_connector, mock_repository, connection):
        mock_repository.get_connection.return_value = connection
        scripted_connector.script = [ok(records_processed=4, records_created=4)]

        payload = (await orchestrator.execute_sync_job(job())).to_dict()

        assert payload["success"] is True
        assert payload["started_at"] == "2025-01-01T00:00:00+00:00"
        assert payload["records_processed"] == 4
        assert payload["records_created"] == 4
        assert payload["errors"] == []
