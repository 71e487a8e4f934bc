"""
Integration health and sync metrics.

Everything here is derived from IntegrationSyncLog rows and the connection's
last-sync timestamp; nothing is stored.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from wotc_sync.core.clock import Clock, SystemClock
from wotc_sync.services.orchestrator import RepositoryFactory
from wotc_sync.services.repository import repository_scope

logger = logging.getLogger("wotc_sync.health")

HEALTHY = "healthy"
DEGRADED = "degraded"
CRITICAL = "critical"
DISCONNECTED = "disconnected"

# Thresholds for connection status
CRITICAL_STALE_HOURS = 48
DEGRADED_STALE_HOURS = 24
CRITICAL_SUCCESS_RATE = 50.0
DEGRADED_SUCCESS_RATE = 80.0
CRITICAL_FAILURES = 10
DEGRADED_FAILURES = 5

HEALTH_WINDOW = timedelta(hours=24)


@dataclass
class ConnectionHealth:
    connection_id: int
    provider_name: str
    status: str
    last_sync_at: Optional[datetime]
    success_rate: float
    error_count_24h: int
    avg_sync_duration_ms: float
    total_records_synced: int
    issues: List[str] = field(default_factory=list)


@dataclass
class SyncStatistics:
    total_connections: int = 0
    active_connections: int = 0
    total_syncs_24h: int = 0
    successful_syncs_24h: int = 0
    failed_syncs_24h: int = 0
    total_records_processed_24h: int = 0
    total_records_created_24h: int = 0
    total_records_updated_24h: int = 0
    avg_sync_duration_ms: float = 0.0
    syncs_by_provider: Dict[str, int] = field(default_factory=dict)
    syncs_by_status: Dict[str, int] = field(default_factory=dict)


@dataclass
class SyncErrorEntry:
    id: int
    connection_id: int
    provider_name: str
    sync_type: str
    error_message: str
    error_details: Any
    timestamp: Optional[datetime]
    records_affected: int


@dataclass
class FlowBucket:
    key: str
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    sync_count: int = 0

    def add(self, log: Any) -> None:
        self.records_processed += log.records_processed or 0
        self.records_created += log.records_created or 0
        self.records_updated += log.records_updated or 0
        self.sync_count += 1


@dataclass
class DataFlowMetrics:
    hourly: List[FlowBucket] = field(default_factory=list)
    daily: List[FlowBucket] = field(default_factory=list)
    by_provider: List[FlowBucket] = field(default_factory=list)


@dataclass
class IntegrationDashboard:
    overview: Dict[str, int]
    sync_activity: Dict[str, float]
    connection_health: List[ConnectionHealth]
    recent_errors: List[SyncErrorEntry]
    data_flow: DataFlowMetrics


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _avg_duration_ms(logs: Iterable[Any]) -> float:
    durations = [
        (_as_utc(log.completed_at) - _as_utc(log.started_at)).total_seconds() * 1000
        for log in logs
        if log.started_at and log.completed_at
    ]
    return sum(durations) / len(durations) if durations else 0.0


def _success_rate(logs: Sequence[Any]) -> float:
    if not logs:
        return 100.0
    completed = sum(1 for log in logs if log.status == "completed")
    return completed / len(logs) * 100


def provider_name(connection: Any) -> str:
    return connection.display_name or connection.provider_id or "Unknown"


def compute_connection_health(connection: Any, logs: Sequence[Any], now: datetime) -> ConnectionHealth:
    """
    Health of one connection from its logs in the last 24 hours.

    Every triggered issue is reported; status is the worst one.
    """
    now = _as_utc(now)
    recent = [log for log in logs if log.started_at and _as_utc(log.started_at) >= now - HEALTH_WINDOW]
    failures = sum(1 for log in recent if log.status == "failed")
    success_rate = _success_rate(recent)

    issues: List[str] = []
    status = HEALTHY

    if not connection.last_sync_at:
        status = DISCONNECTED
        issues.append("Never synced")
    else:
        elapsed = (now - _as_utc(connection.last_sync_at)).total_seconds() / 3600
        hours_since = int(elapsed)
        if elapsed > CRITICAL_STALE_HOURS:
            status = CRITICAL
            issues.append(f"No sync in {hours_since} hours")
        elif elapsed > DEGRADED_STALE_HOURS:
            status = DEGRADED
            issues.append(f"Last sync {hours_since} hours ago")

        if success_rate < CRITICAL_SUCCESS_RATE:
            status = CRITICAL
            issues.append(f"Low success rate: {success_rate:.1f}%")
        elif success_rate < DEGRADED_SUCCESS_RATE:
            if status == HEALTHY:
                status = DEGRADED
            issues.append(f"Success rate below target: {success_rate:.1f}%")

        if failures > CRITICAL_FAILURES:
            status = CRITICAL
            issues.append(f"{failures} failures in last 24h")
        elif failures > DEGRADED_FAILURES:
            if status == HEALTHY:
                status = DEGRADED
            issues.append(f"{failures} failures in last 24h")

    return ConnectionHealth(
        connection_id=connection.id,
        provider_name=provider_name(connection),
        status=status,
        last_sync_at=connection.last_sync_at,
        success_rate=success_rate,
        error_count_24h=failures,
        avg_sync_duration_ms=_avg_duration_ms(recent),
        total_records_synced=sum(log.records_processed or 0 for log in recent),
        issues=issues,
    )


class IntegrationMonitor:
    """Per-employer integration health, statistics, errors and data flow."""

    def __init__(self, repository_factory: RepositoryFactory = repository_scope, clock: Optional[Clock] = None):
        self.repository_factory = repository_factory
        self.clock = clock or SystemClock()

    async def get_connections_health(self, employer_id: str) -> List[ConnectionHealth]:
        now = self.clock.now()
        async with self.repository_factory() as repository:
            connections = [c for c in await repository.list_connections(employer_id) if c.status == "active"]
            logs = await repository.logs_since([c.id for c in connections], now - HEALTH_WINDOW)

        return [
            compute_connection_health(c, [log for log in logs if log.connection_id == c.id], now)
            for c in connections
        ]

    async def get_sync_statistics(self, employer_id: str) -> SyncStatistics:
        now = self.clock.now()
        async with self.repository_factory() as repository:
            connections = await repository.list_connections(employer_id)
            logs = await repository.logs_since([c.id for c in connections], now - HEALTH_WINDOW)

        names = {c.id: provider_name(c) for c in connections}
        stats = SyncStatistics(
            total_connections=len(connections),
            active_connections=sum(1 for c in connections if c.status == "active"),
            total_syncs_24h=len(logs),
            successful_syncs_24h=sum(1 for log in logs if log.status == "completed"),
            failed_syncs_24h=sum(1 for log in logs if log.status == "failed"),
            total_records_processed_24h=sum(log.records_processed or 0 for log in logs),
            total_records_created_24h=sum(log.records_created or 0 for log in logs),
            total_records_updated_24h=sum(log.records_updated or 0 for log in logs),
            avg_sync_duration_ms=_avg_duration_ms(logs),
        )
        for log in logs:
            name = names.get(log.connection_id, "Unknown")
            stats.syncs_by_provider[name] = stats.syncs_by_provider.get(name, 0) + 1
            status = log.status or "unknown"
            stats.syncs_by_status[status] = stats.syncs_by_status.get(status, 0) + 1
        return stats

    async def get_recent_errors(self, employer_id: str, limit: int = 50) -> List[SyncErrorEntry]:
        async with self.repository_factory() as repository:
            connections = await repository.list_connections(employer_id)
            logs = await repository.recent_failures([c.id for c in connections], limit=limit)

        names = {c.id: provider_name(c) for c in connections}
        return [
            SyncErrorEntry(
                id=log.id,
                connection_id=log.connection_id,
                provider_name=names.get(log.connection_id, "Unknown"),
                sync_type=log.job_type or "unknown",
                error_message=log.error_message or "No error message",
                error_details=log.error_details,
                timestamp=log.started_at,
                records_affected=log.records_processed or 0,
            )
            for log in logs
        ]

    async def get_data_flow_metrics(self, employer_id: str, days: int = 7) -> DataFlowMetrics:
        now = _as_utc(self.clock.now())
        async with self.repository_factory() as repository:
            connections = await repository.list_connections(employer_id)
            logs = await repository.logs_since([c.id for c in connections], now - timedelta(days=days))

        names = {c.id: provider_name(c) for c in connections}
        hourly: Dict[str, FlowBucket] = OrderedDict()
        daily: Dict[str, FlowBucket] = OrderedDict()
        by_provider: Dict[str, FlowBucket] = OrderedDict()

        for log in sorted((log for log in logs if log.started_at), key=lambda log: _as_utc(log.started_at)):
            started = _as_utc(log.started_at)
            if started >= now - HEALTH_WINDOW:
                hour = started.strftime("%Y-%m-%dT%H:00")
                hourly.setdefault(hour, FlowBucket(hour)).add(log)
            day = started.strftime("%Y-%m-%d")
            daily.setdefault(day, FlowBucket(day)).add(log)
            name = names.get(log.connection_id, "Unknown")
            by_provider.setdefault(name, FlowBucket(name)).add(log)

        return DataFlowMetrics(
            hourly=list(hourly.values()),
            daily=list(daily.values()),
            by_provider=list(by_provider.values()),
        )

    async def get_dashboard(self, employer_id: str) -> IntegrationDashboard:
        health = await self.get_connections_health(employer_id)
        stats = await self.get_sync_statistics(employer_id)
        errors = await self.get_recent_errors(employer_id, limit=10)
        data_flow = await self.get_data_flow_metrics(employer_id, days=7)

        success_rate = (
            stats.successful_syncs_24h / stats.total_syncs_24h * 100 if stats.total_syncs_24h else 100.0
        )
        return IntegrationDashboard(
            overview={
                "total_connections": stats.total_connections,
                "active_connections": stats.active_connections,
                "healthy_connections": sum(1 for h in health if h.status == HEALTHY),
                "critical_connections": sum(1 for h in health if h.status == CRITICAL),
            },
            sync_activity={
                "total_syncs_24h": stats.total_syncs_24h,
                "success_rate": success_rate,
                "total_records_processed_24h": stats.total_records_processed_24h,
                "avg_sync_duration_ms": stats.avg_sync_duration_ms,
            },
            connection_health=health,
            recent_errors=errors,
            data_flow=data_flow,
        )
