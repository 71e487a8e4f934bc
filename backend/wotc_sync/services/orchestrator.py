"""
Sync job execution.

One execution resolves the job type to its connector, runs it with job-level
retry, and records exactly one sync log row plus the connection's last-sync
state. A connector reporting ``success=False`` is retried the same way as one
that raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, Callable, Optional, Tuple

import httpx

from wotc_sync.connectors import ConnectorRegistry, SyncCadence, SyncJobType, SyncResult, SyncWindow
from wotc_sync.connectors.base import RecalculationHook
from wotc_sync.core.clock import Clock, SystemClock
from wotc_sync.core.config import settings
from wotc_sync.core.exceptions import ResourceNotFoundError
from wotc_sync.core.metrics import record_job_metrics
from wotc_sync.services.repository import SyncRepository, repository_scope
from wotc_sync.services.retry import RetryPolicy

logger = logging.getLogger("wotc_sync.orchestrator")

RepositoryFactory = Callable[[], AsyncContextManager[SyncRepository]]

# Upper bound on the error text stored on the log row and connection
MAX_ERROR_MESSAGE_ERRORS = 5


@dataclass
class SyncJobConfig:
    connection_id: int
    employer_id: str
    job_type: SyncJobType
    cadence: SyncCadence = SyncCadence.MANUAL
    enabled: bool = True
    retry_attempts: int = field(default_factory=lambda: settings.SYNC_DEFAULT_RETRY_ATTEMPTS)
    retry_delay: float = field(default_factory=lambda: settings.SYNC_DEFAULT_RETRY_DELAY_SECONDS)

    def __post_init__(self):
        # Unknown job types are rejected by execute_sync_job, not here
        if self.job_type in SyncJobType._value2member_map_:
            self.job_type = SyncJobType(self.job_type)
        self.cadence = SyncCadence(self.cadence)

    @property
    def key(self) -> Tuple[int, SyncJobType]:
        return (self.connection_id, self.job_type)


@dataclass
class SyncJobResult:
    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: SyncResult
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "retry_count": self.retry_count,
            "records_processed": self.result.records_processed,
            "records_created": self.result.records_created,
            "records_updated": self.result.records_updated,
            "records_failed": self.result.records_failed,
            "errors": self.result.errors,
        }


class SyncOrchestrator:
    """Runs sync jobs. Stateless apart from its collaborators, so one instance serves every job."""

    def __init__(
        self,
        repository_factory: RepositoryFactory = repository_scope,
        clock: Optional[Clock] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        recalculate: Optional[RecalculationHook] = None,
    ):
        self.repository_factory = repository_factory
        self.clock = clock or SystemClock()
        self.http_client = http_client
        self.recalculate = recalculate

    def _job_id(self, config: SyncJobConfig, started_at: datetime) -> str:
        return f"{config.connection_id}-{config.job_type.value}-{int(started_at.timestamp() * 1000)}"

    async def execute_sync_job(self, config: SyncJobConfig) -> SyncJobResult:
        """
        Execute one sync job with retry.

        Each attempt runs in its own repository scope and backoff sleeps happen
        between scopes, so a failing job never holds a pooled connection while
        it waits.

        Raises ConfigurationError before any attempt when the job type has no
        connector or the connection does not exist.
        """
        connector_class = ConnectorRegistry.require(config.job_type)
        started_at = self.clock.now()
        job_id = self._job_id(config, started_at)

        async with self.repository_factory() as repository:
            connection = await repository.get_connection(config.connection_id)
            if connection is None:
                raise ResourceNotFoundError(f"Integration connection {config.connection_id} not found")
            provider_id = connection.provider_id

        window = None
        if connector_class.LOOKBACK_DAYS:
            lookback = settings.SYNC_PAYROLL_LOOKBACK_DAYS or connector_class.LOOKBACK_DAYS
            window = SyncWindow.lookback(lookback, today=started_at.date())

        async def attempt() -> SyncResult:
            async with self.repository_factory() as repository:
                connection = await repository.get_connection(config.connection_id)
                if connection is None:
                    raise ResourceNotFoundError(f"Integration connection {config.connection_id} not found")
                connector = connector_class(
                    connection,
                    repository,
                    http_client=self.http_client,
                    recalculate=self.recalculate,
                )
                return await connector.sync(window)

        policy = RetryPolicy(
            max_attempts=max(config.retry_attempts, 0) + 1,
            base_delay=config.retry_delay,
            is_failure=lambda r: not r.success,
            sleep=self.clock.sleep,
            name=f"Sync job {job_id}",
        )
        logger.info(f"Starting sync job {job_id}", extra={"job_id": job_id, "connection_id": config.connection_id})
        outcome = await policy.run(attempt)

        result = outcome.value
        if result is None:
            result = SyncResult(success=False, errors=[f"{outcome.error.__class__.__name__}: {outcome.error}"])
        job = SyncJobResult(
            job_id=job_id,
            success=outcome.success,
            started_at=started_at,
            completed_at=self.clock.now(),
            result=result,
            retry_count=outcome.retry_count,
        )

        async with self.repository_factory() as repository:
            await self._record(repository, provider_id, config, job)

        record_job_metrics(config.job_type.value, provider_id, job.success, result)
        if job.success:
            logger.info(f"Sync job {job_id} completed after {job.retry_count + 1} attempt(s)")
        else:
            logger.error(f"Sync job {job_id} failed after {job.retry_count + 1} attempt(s)")
        return job

    async def _record(self, repository: SyncRepository, provider_id: str, config: SyncJobConfig, job: SyncJobResult) -> None:
        result = job.result
        status = "completed" if job.success else "failed"
        error_message = "; ".join(result.errors[:MAX_ERROR_MESSAGE_ERRORS]) or None

        await repository.add_sync_log(
            connection_id=config.connection_id,
            employer_id=config.employer_id,
            provider_id=provider_id,
            job_id=job.job_id,
            job_type=config.job_type.value,
            status=status,
            started_at=job.started_at,
            completed_at=job.completed_at,
            records_processed=result.records_processed,
            records_created=result.records_created,
            records_updated=result.records_updated,
            records_failed=result.records_failed,
            retry_count=job.retry_count,
            error_message=error_message,
            error_details={"errors": result.errors} if result.errors else None,
        )

        connection = await repository.get_connection(config.connection_id)
        if connection is None:
            logger.warning(f"Connection {config.connection_id} was removed during sync job {job.job_id}")
            return
        await repository.record_sync_outcome(
            connection,
            status,
            job.completed_at,
            None if job.success else error_message,
        )
