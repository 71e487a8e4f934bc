"""
Shared test fixtures and configuration for the sync engine tests.
"""
import base64
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-min-32-chars"
os.environ["VAULT_ENCRYPTION_KEY"] = base64.urlsafe_b64encode(b"k" * 32).decode()
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"
os.environ["SFTP_USERNAME"] = "csdc-user"
os.environ["SFTP_PASSWORD"] = "csdc-password"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from wotc_sync.core.encryption import CredentialVault  # noqa: E402
from wotc_sync.services.repository import SyncRepository  # noqa: E402


def _make_connection(**overrides):
    values = {
        "id": 1,
        "employer_id": "emp-1",
        "provider_id": "gusto",
        "provider_kind": "gusto",
        "display_name": None,
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "api_key": None,
        "token_expires_at": None,
        "provider_metadata": {},
        "field_mappings": None,
        "status": "active",
        "last_sync_at": None,
        "last_sync_status": None,
        "last_sync_error": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _make_sync_log(connection_id=1, status="completed", started_at=None, duration_seconds=2.0, **overrides):
    started_at = started_at or datetime(2025, 1, 1, tzinfo=timezone.utc)
    values = {
        "id": 1,
        "connection_id": connection_id,
        "job_type": "gusto_payroll",
        "status": status,
        "started_at": started_at,
        "completed_at": started_at + timedelta(seconds=duration_seconds),
        "records_processed": 10,
        "records_created": 4,
        "records_updated": 6,
        "records_failed": 0,
        "error_message": None,
        "error_details": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def make_connection():
    """Factory for IntegrationConnection stand-ins."""
    return _make_connection


@pytest.fixture
def make_sync_log():
    """Factory for IntegrationSyncLog stand-ins."""
    return _make_sync_log


@pytest.fixture
def connection():
    return _make_connection()


@pytest.fixture
def vault():
    """Vault with a fixed test key."""
    return CredentialVault(b"v" * 32)


@pytest.fixture
def mock_db_session():
    """Create a mock async database session."""
    session = AsyncMock(spec=AsyncSession)
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_repository():
    """SyncRepository with every coroutine method mocked."""
    repository = AsyncMock(spec=SyncRepository)
    repository.find_mapping.return_value = None
    repository.get_employee.return_value = None
    repository.find_employee_by_email.return_value = None
    return repository


@pytest.fixture
def repository_factory(mock_repository):
    """repository_scope replacement yielding the mocked repository."""
    @asynccontextmanager
    async def factory():
        yield mock_repository

    return factory
