"""
Sync Scheduler

Keeps one fixed-interval timer per (connection, job type) and routes webhook
and operator triggers to the orchestrator. Executions for the same key never
overlap; different keys run concurrently on the event loop.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from wotc_sync.connectors import ConnectorRegistry, ProviderKind, SyncCadence, SyncJobType
from wotc_sync.core.clock import Clock, SystemClock
from wotc_sync.core.config import settings
from wotc_sync.core.exceptions import ConfigurationError, ResourceNotFoundError
from wotc_sync.core.locks import KeyedLock
from wotc_sync.services.orchestrator import (
    RepositoryFactory,
    SyncJobConfig,
    SyncJobResult,
    SyncOrchestrator,
)
from wotc_sync.services.repository import repository_scope

logger = logging.getLogger("wotc_sync.scheduler")

CADENCE_INTERVAL_SECONDS: Dict[SyncCadence, int] = {
    SyncCadence.HOURLY: 60 * 60,
    SyncCadence.DAILY: 24 * 60 * 60,
    SyncCadence.WEEKLY: 7 * 24 * 60 * 60,
}

JobKey = Tuple[int, SyncJobType]


def resolve_provider_kind(connection: Any) -> ProviderKind:
    try:
        return ProviderKind(connection.provider_kind)
    except ValueError:
        return ProviderKind.from_provider_id(connection.provider_id)


class SyncScheduler:
    """
    Background scheduler for integration sync jobs.

    Usage:
        scheduler = SyncScheduler()
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: Optional[SyncOrchestrator] = None,
        clock: Optional[Clock] = None,
        repository_factory: RepositoryFactory = repository_scope,
    ):
        self.clock = clock or SystemClock()
        self.repository_factory = repository_factory
        self.orchestrator = orchestrator or SyncOrchestrator(
            repository_factory=repository_factory, clock=self.clock
        )
        self._running = False
        self._timers: Dict[JobKey, asyncio.Task] = {}
        self._configs: Dict[JobKey, SyncJobConfig] = {}
        self._executions: Set[asyncio.Task] = set()
        self._locks = KeyedLock()

    # Lifecycle

    async def start(self) -> None:
        """Start the scheduler and install timers for every active connection."""
        if self._running:
            logger.warning("Sync scheduler already running")
            return

        self._running = True
        if not settings.SYNC_SCHEDULER_ENABLED:
            logger.info("Sync scheduler disabled - no timers installed")
            return

        try:
            scheduled = await self.initialize_scheduled_syncs()
        except Exception as e:
            logger.error(f"Failed to initialize scheduled syncs: {e}")
            return
        logger.info(f"Sync scheduler started with {scheduled} scheduled job(s)")

    async def stop(self) -> None:
        """Cancel every timer and any execution still in flight."""
        self._running = False

        for key in list(self._timers):
            self.cancel_scheduled_sync(*key)

        pending = list(self._executions)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._executions.clear()

        logger.info("Sync scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    # Scheduling

    def schedule_sync(self, config: SyncJobConfig) -> bool:
        """
        Install a fixed-interval timer for the job and run it once now.

        Replaces any timer already installed for the same key. Realtime,
        manual and disabled jobs are not scheduled; returns False for them.
        """
        ConnectorRegistry.require(config.job_type)
        self.cancel_scheduled_sync(config.connection_id, config.job_type)

        interval = CADENCE_INTERVAL_SECONDS.get(config.cadence)
        if not config.enabled or interval is None:
            logger.debug(f"Not scheduling {config.key}: cadence={config.cadence.value}, enabled={config.enabled}")
            return False

        key = config.key
        self._configs[key] = config
        self._timers[key] = asyncio.create_task(self._timer_loop(config, interval))
        self._spawn(config)

        logger.info(f"Scheduled {config.job_type.value} for connection {config.connection_id} every {interval}s")
        return True

    def cancel_scheduled_sync(self, connection_id: int, job_type: Any) -> bool:
        """Remove the timer for this key. Executions already running are left alone."""
        try:
            key = (connection_id, SyncJobType(job_type))
        except ValueError:
            return False
        self._configs.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.info(f"Cancelled scheduled sync {job_type} for connection {connection_id}")
        return True

    def active_jobs(self) -> List[JobKey]:
        return list(self._timers.keys())

    def scheduled_config(self, connection_id: int, job_type: Any) -> Optional[SyncJobConfig]:
        try:
            return self._configs.get((connection_id, SyncJobType(job_type)))
        except ValueError:
            return None

    async def initialize_scheduled_syncs(self) -> int:
        """Schedule every registered job type for each active connection at its default cadence."""
        async with self.repository_factory() as repository:
            connections = await repository.list_active_connections()

        scheduled = 0
        for connection in connections:
            try:
                kind = resolve_provider_kind(connection)
            except ConfigurationError as e:
                logger.warning(f"Skipping connection {connection.id}: {e}")
                continue

            for connector_class in ConnectorRegistry.for_provider(kind):
                config = SyncJobConfig(
                    connection_id=connection.id,
                    employer_id=connection.employer_id,
                    job_type=connector_class.JOB_TYPE,
                    cadence=connector_class.DEFAULT_CADENCE,
                )
                if self.schedule_sync(config):
                    scheduled += 1
        return scheduled

    # Triggers

    async def handle_webhook(self, provider_id: str, payload: Dict[str, Any]) -> Optional[SyncJobResult]:
        """
        Run the job a provider webhook event maps to, once, right away.

        Returns None when the provider has no active connection or the event
        does not map to a job type.
        """
        try:
            kind = ProviderKind.from_provider_id(provider_id)
        except ConfigurationError:
            logger.warning(f"Webhook from unknown provider: {provider_id}")
            return None

        connector_class = ConnectorRegistry.for_webhook(kind, payload)
        if connector_class is None:
            logger.info(f"Ignoring {provider_id} webhook event with no matching sync job")
            return None

        async with self.repository_factory() as repository:
            connection = await repository.find_active_connection(provider_id)
        if connection is None:
            logger.warning(f"No active connection found for provider: {provider_id}")
            return None

        config = SyncJobConfig(
            connection_id=connection.id,
            employer_id=connection.employer_id,
            job_type=connector_class.JOB_TYPE,
            cadence=SyncCadence.REALTIME,
        )
        return await self._execute(config)

    async def trigger_manual_sync(self, connection_id: int, job_type: Any) -> SyncJobResult:
        """
        Run a job on operator request.

        Raises ConfigurationError for an unknown connection or job type.
        """
        ConnectorRegistry.require(job_type)
        async with self.repository_factory() as repository:
            connection = await repository.get_connection(connection_id)
        if connection is None:
            raise ResourceNotFoundError(f"Integration connection {connection_id} not found")

        config = SyncJobConfig(
            connection_id=connection.id,
            employer_id=connection.employer_id,
            job_type=job_type,
            cadence=SyncCadence.MANUAL,
        )
        async with self._locks.hold(config.key):
            return await self.orchestrator.execute_sync_job(config)

    # Internals

    async def _timer_loop(self, config: SyncJobConfig, interval: int) -> None:
        while True:
            await self.clock.sleep(interval)
            self._spawn(config)

    def _spawn(self, config: SyncJobConfig) -> asyncio.Task:
        task = asyncio.create_task(self._execute(config))
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return task

    async def _execute(self, config: SyncJobConfig) -> Optional[SyncJobResult]:
        """Run one execution under the key's lock. Nothing raised here escapes."""
        async with self._locks.hold(config.key):
            try:
                return await self.orchestrator.execute_sync_job(config)
            except Exception as e:
                logger.error(f"Sync job {config.job_type} for connection {config.connection_id} errored: {e}")
                return None


# Global scheduler instance
_sync_scheduler: Optional[SyncScheduler] = None


def get_sync_scheduler() -> SyncScheduler:
    """Get the global sync scheduler."""
    global _sync_scheduler
    if _sync_scheduler is None:
        _sync_scheduler = SyncScheduler()
    return _sync_scheduler


async def start_sync_scheduler() -> None:
    """Start the global sync scheduler."""
    await get_sync_scheduler().start()


async def stop_sync_scheduler() -> None:
    """Stop the global sync scheduler."""
    global _sync_scheduler
    if _sync_scheduler is not None:
        await _sync_scheduler.stop()
        _sync_scheduler = None
