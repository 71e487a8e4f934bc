"""
Database access for sync jobs.

Connectors, the orchestrator and the health monitor talk to this class rather
than to the session directly, which keeps them testable with an AsyncMock.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from wotc_sync.core.locks import KeyedLock
from wotc_sync.models.employee import Employee, HoursWorked
from wotc_sync.models.integration import (
    IntegrationConnection,
    IntegrationSyncedRecord,
    IntegrationSyncLog,
)

logger = logging.getLogger("wotc_sync.repository")

# Serialises hours upserts for the same (employee, period) across connectors
PERIOD_LOCKS = KeyedLock()

PAYROLL_SOURCE = "payroll_system"


class SyncRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # Connections

    async def get_connection(self, connection_id: int) -> Optional[IntegrationConnection]:
        return await self.db.get(IntegrationConnection, connection_id)

    async def list_active_connections(self) -> List[IntegrationConnection]:
        result = await self.db.execute(
            select(IntegrationConnection).where(IntegrationConnection.status == "active")
        )
        return list(result.scalars().all())

    async def find_active_connection(self, provider_id: str) -> Optional[IntegrationConnection]:
        result = await self.db.execute(
            select(IntegrationConnection).where(
                and_(
                    IntegrationConnection.provider_id == provider_id,
                    IntegrationConnection.status == "active",
                )
            ).order_by(IntegrationConnection.id).limit(1)
        )
        return result.scalars().first()

    async def list_connections(self, employer_id: Optional[str] = None) -> List[IntegrationConnection]:
        query = select(IntegrationConnection)
        if employer_id is not None:
            query = query.where(IntegrationConnection.employer_id == employer_id)
        result = await self.db.execute(query.order_by(IntegrationConnection.id))
        return list(result.scalars().all())

    async def store_tokens(
        self,
        connection: IntegrationConnection,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        connection.access_token = access_token
        if refresh_token:
            connection.refresh_token = refresh_token
        connection.token_expires_at = expires_at
        await self.db.commit()

    async def record_sync_outcome(
        self,
        connection: IntegrationConnection,
        status: str,
        completed_at: datetime,
        error: Optional[str] = None,
    ) -> None:
        connection.last_sync_status = status
        connection.last_sync_error = error
        if status == "completed":
            connection.last_sync_at = completed_at
        await self.db.commit()

    async def set_field_mappings(self, connection: IntegrationConnection, mappings: Dict[str, str]) -> None:
        connection.field_mappings = mappings or None
        await self.db.commit()

    # Mappings

    async def find_mapping(
        self,
        connection_id: int,
        external_id: str,
        external_type: str,
    ) -> Optional[IntegrationSyncedRecord]:
        result = await self.db.execute(
            select(IntegrationSyncedRecord).where(
                and_(
                    IntegrationSyncedRecord.connection_id == connection_id,
                    IntegrationSyncedRecord.external_id == str(external_id),
                    IntegrationSyncedRecord.external_type == external_type,
                )
            ).limit(1)
        )
        return result.scalars().first()

    async def track_synced_record(
        self,
        connection_id: int,
        external_id: str,
        external_type: str,
        internal_id: int,
        internal_type: str,
    ) -> IntegrationSyncedRecord:
        """
        Record where an external record landed.

        An existing mapping keeps its internal id; only its timestamp moves.
        """
        existing = await self.find_mapping(connection_id, external_id, external_type)
        if existing is not None:
            if existing.internal_id != internal_id:
                logger.warning(
                    f"Mapping {external_type}:{external_id} on connection {connection_id} already points to "
                    f"{existing.internal_id}; ignoring {internal_id}"
                )
            existing.last_synced_at = datetime.utcnow()
            await self.db.flush()
            return existing

        mapping = IntegrationSyncedRecord(
            connection_id=connection_id,
            external_id=str(external_id),
            external_type=external_type,
            internal_id=internal_id,
            internal_type=internal_type,
        )
        self.db.add(mapping)
        await self.db.flush()
        return mapping

    async def pending_result_pushes(
        self,
        connection_id: int,
        source_type: str,
        push_type: str,
        statuses: Sequence[str],
    ) -> List[Dict]:
        """
        Employees imported through a connection whose final screening status
        has not been pushed back yet.

        Rows are plain dicts so a later rollback cannot expire them.
        """
        result = await self.db.execute(
            select(
                IntegrationSyncedRecord.external_id,
                Employee.id.label("employee_id"),
                Employee.screening_status,
                Employee.target_group,
                Employee.certification_number,
                Employee.credit_amount,
            )
            .join(Employee, Employee.id == IntegrationSyncedRecord.internal_id)
            .where(
                and_(
                    IntegrationSyncedRecord.connection_id == connection_id,
                    IntegrationSyncedRecord.external_type == source_type,
                    IntegrationSyncedRecord.internal_type == "employee",
                    Employee.screening_status.in_(list(statuses)),
                )
            )
            .order_by(Employee.id)
        )
        candidates = [dict(row._mapping) for row in result.all()]

        pushed = await self.db.execute(
            select(IntegrationSyncedRecord.external_id).where(
                and_(
                    IntegrationSyncedRecord.connection_id == connection_id,
                    IntegrationSyncedRecord.external_type == push_type,
                )
            )
        )
        done = set(pushed.scalars().all())
        return [row for row in candidates if f"{row['external_id']}:{row['screening_status']}" not in done]

    # Employees

    async def get_employee(self, employee_id: int) -> Optional[Employee]:
        return await self.db.get(Employee, employee_id)

    async def find_employee_by_email(self, employer_id: str, email: str) -> Optional[Employee]:
        if not email:
            return None
        result = await self.db.execute(
            select(Employee).where(
                and_(Employee.employer_id == employer_id, Employee.email == email)
            ).limit(1)
        )
        return result.scalars().first()

    async def create_employee(self, employer_id: str, fields: Dict) -> Employee:
        employee = Employee(employer_id=employer_id, **fields)
        self.db.add(employee)
        await self.db.flush()
        return employee

    async def update_employee(self, employee: Employee, fields: Dict) -> Employee:
        for key, value in fields.items():
            if value is not None:
                setattr(employee, key, value)
        await self.db.flush()
        return employee

    # Hours

    async def upsert_hours(
        self,
        employee_id: int,
        employer_id: str,
        period_start: date,
        period_end: date,
        hours: Decimal,
        wages: Optional[Decimal],
        source_reference: Optional[str] = None,
    ) -> Tuple[HoursWorked, bool]:
        """Update the record for this exact period or insert one. Returns (record, created)."""
        async with PERIOD_LOCKS.hold((employee_id, period_start, period_end)):
            result = await self.db.execute(
                select(HoursWorked).where(
                    and_(
                        HoursWorked.employee_id == employee_id,
                        HoursWorked.period_start == period_start,
                        HoursWorked.period_end == period_end,
                    )
                ).limit(1)
            )
            existing = result.scalars().first()

            if existing is not None:
                existing.hours = hours
                existing.wages = wages
                existing.source = PAYROLL_SOURCE
                existing.source_reference = source_reference
                await self.db.commit()
                return existing, False

            record = HoursWorked(
                employee_id=employee_id,
                employer_id=employer_id,
                period_start=period_start,
                period_end=period_end,
                hours=hours,
                wages=wages,
                source=PAYROLL_SOURCE,
                source_reference=source_reference,
                notes="Imported from payroll system",
            )
            self.db.add(record)
            await self.db.commit()
            return record, True

    # Sync logs

    async def add_sync_log(self, **fields) -> IntegrationSyncLog:
        log = IntegrationSyncLog(**fields)
        self.db.add(log)
        await self.db.commit()
        return log

    async def logs_since(self, connection_ids: Sequence[int], since: datetime) -> List[IntegrationSyncLog]:
        if not connection_ids:
            return []
        result = await self.db.execute(
            select(IntegrationSyncLog).where(
                and_(
                    IntegrationSyncLog.connection_id.in_(list(connection_ids)),
                    IntegrationSyncLog.started_at >= since,
                )
            ).order_by(desc(IntegrationSyncLog.started_at))
        )
        return list(result.scalars().all())

    async def recent_failures(self, connection_ids: Sequence[int], limit: int = 50) -> List[IntegrationSyncLog]:
        if not connection_ids:
            return []
        result = await self.db.execute(
            select(IntegrationSyncLog).where(
                and_(
                    IntegrationSyncLog.connection_id.in_(list(connection_ids)),
                    IntegrationSyncLog.status == "failed",
                )
            ).order_by(desc(IntegrationSyncLog.started_at)).limit(limit)
        )
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def refresh(self, instance) -> None:
        await self.db.refresh(instance)


@asynccontextmanager
async def repository_scope() -> AsyncIterator[SyncRepository]:
    """Open a session for one unit of work (one sync attempt, one webhook...)."""
    from wotc_sync.db.session import AsyncSessionLocal

    async with AsyncSessionLocal() as db:
        try:
            yield SyncRepository(db)
        except Exception:
            await db.rollback()
            raise
