"""
Payroll/ATS integration models.

IntegrationConnection holds one employer's link to a provider.
IntegrationSyncedRecord maps provider record ids to internal ids and is
write-once: a later sync never re-points an existing mapping.
IntegrationSyncLog has one immutable row per sync job execution and is the
only input to integration health.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.sql import func

from wotc_sync.core.encryption import EncryptedString
from wotc_sync.db.base_class import Base


class IntegrationConnection(Base):
    __tablename__ = "integration_connections"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, autoincrement=True)
    employer_id = Column(String(64), nullable=False, index=True)
    provider_id = Column(String(100), nullable=False)  # e.g. 'gusto', 'adp-workforce-now'
    provider_kind = Column(String(20), nullable=False, index=True)  # resolved once at creation
    display_name = Column(String(255), nullable=True)

    # Sealed by the credential vault on write
    access_token = Column(EncryptedString(2000), nullable=True)
    refresh_token = Column(EncryptedString(2000), nullable=True)
    api_key = Column(EncryptedString(1000), nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Provider-specific settings (realm_id, company_domain, company_id...)
    provider_metadata = Column(JSON, nullable=True)
    # Provider field path -> Employee column, applied on top of the built-in import mapping
    field_mappings = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="active", index=True)  # active, disabled

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String(20), nullable=True)  # completed, failed
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class IntegrationSyncedRecord(Base):
    __tablename__ = "integration_synced_records"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", "external_type", name="uq_synced_record_external"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey("integration_connections.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    external_type = Column(String(50), nullable=False)  # employee, payroll, wotc_result
    internal_id = Column(Integer, nullable=False)
    internal_type = Column(String(50), nullable=False)  # employee, hours_worked
    last_synced_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class IntegrationSyncLog(Base):
    __tablename__ = "integration_sync_logs"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, ForeignKey("integration_connections.id"), nullable=False, index=True)
    employer_id = Column(String(64), nullable=True, index=True)
    provider_id = Column(String(100), nullable=True)
    job_id = Column(String(150), nullable=True)
    job_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, index=True)  # pending, processing, completed, failed

    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    records_processed = Column(Integer, nullable=False, default=0)
    records_created = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    retry_count = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)


Index('idx_integration_sync_logs_conn_started', IntegrationSyncLog.connection_id, IntegrationSyncLog.started_at)
