"""
Tests for state portal configuration and the submission workflow.
"""
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from wotc_sync.codecs import SubmissionRecord
from wotc_sync.core.exceptions import (
    ConfigurationError,
    ResourceNotFoundError,
    SubmissionValidationError,
)
from wotc_sync.core.mfa import generate_totp_token
from wotc_sync.models.portal import StatePortalConfig
from wotc_sync.services.portal_config import PortalConfigService
from wotc_sync.services.submission import StateSubmissionService
from wotc_sync.transport.sftp import ConnectionCheck, DeterminationDownload, UploadResult

TOTP_SECRET = "JBSWY3DPEHPK3PXP"


def make_record(**overrides) -> SubmissionRecord:
    values = dict(
        first_name="Maria",
        last_name="Lopez",
        ssn="123-45-6789",
        employer_ein="12-3456789",
        date_of_birth=date(1990, 4, 15),
        address="12 Peach St",
        city="Atlanta",
        state="GA",
        zip_code="30301",
        hire_date=date(2025, 2, 3),
        hourly_wage=Decimal("11.75"),
        target_groups=("SNAP",),
    )
    values.update(overrides)
    return SubmissionRecord(**values)


def make_portal(vault, **overrides) -> StatePortalConfig:
    values = dict(
        jurisdiction_code="GA",
        jurisdiction_name="Georgia",
        host=None,
        port=None,
        credentials_encrypted=vault.encrypt_credentials({"userId": "ga-user", "password": "ga-pass"}),
        mfa_type=None,
        mfa_secret_encrypted=None,
        backup_codes_encrypted=None,
        challenge_questions=None,
        layout="csdc_fixed_width",
        max_batch_size=None,
        submission_frequency="weekly",
        status="active",
    )
    values.update(overrides)
    return StatePortalConfig(**values)


def db_returning(db, *portals):
    result = MagicMock()
    result.scalars.return_value.first.return_value = portals[0] if portals else None
    result.scalars.return_value.all.return_value = list(portals)
    db.execute.return_value = result
    return db


class FakeTransport:
    """Records how it was built and what it was asked to do."""

    def __init__(self, credentials):
        self.credentials = credentials
        self.uploads = []
        self.upload_result = None

    async def upload(self, jurisdiction, content):
        self.uploads.append((jurisdiction, content))
        if self.upload_result is not None:
            return self.upload_result
        return UploadResult(success=True, jurisdiction=jurisdiction, record_count=content.count(b"\n") + 1)

    async def download_determinations(self, jurisdiction):
        return DeterminationDownload(success=True, jurisdiction=jurisdiction)

    async def test_connection(self):
        return ConnectionCheck(success=True, message=f"Connected to {self.credentials.host}")


@pytest.fixture
def transports():
    return []


@pytest.fixture
def transport_factory(transports):
    def factory(credentials):
        transport = FakeTransport(credentials)
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def service(mock_db_session, vault, transport_factory):
    return StateSubmissionService(mock_db_session, vault=vault, transport_factory=transport_factory)


# =============================================================================
# Portal configuration
# =============================================================================


class TestPortalConfigService:
    @pytest.mark.asyncio
    async def test_create_seals_secrets(self, mock_db_session, vault):
        db_returning(mock_db_session)
        portals = PortalConfigService(mock_db_session, vault)

        portal = await portals.create_portal(
            "ga",
            user_id="ga-user",
            password="ga-pass",
            mfa_type="totp",
            mfa_secret=TOTP_SECRET,
            backup_codes=["AAAA1111"],
            challenge_questions=[{"question": "First pet?", "answer": "Rex"}],
            max_batch_size=500,
        )

        mock_db_session.add.assert_called_once_with(portal)
        mock_db_session.commit.assert_awaited_once()
        assert portal.jurisdiction_code == "GA"
        assert portal.jurisdiction_name == "Georgia"
        assert portal.layout == "csdc_fixed_width"
        assert portal.status == "active"
        assert portal.max_batch_size == 500

        assert portal.credentials_encrypted["password"] != "ga-pass"
        assert vault.decrypt_credentials(portal.credentials_encrypted) == {"userId": "ga-user", "password": "ga-pass"}
        assert vault.is_encrypted(portal.mfa_secret_encrypted)
        assert vault.decrypt(portal.mfa_secret_encrypted) == TOTP_SECRET
        assert vault.decrypt_backup_codes(portal.backup_codes_encrypted) == ["AAAA1111"]
        assert portal.challenge_questions[0]["question"] == "First pet?"
        assert portal.challenge_questions[0]["answer"] != "Rex"

    @pytest.mark.asyncio
    async def test_texas_uses_csv_layout(self, mock_db_session, vault):
        db_returning(mock_db_session)
        portal = await PortalConfigService(mock_db_session, vault).create_portal("TX", "tx-user", "tx-pass")
        assert portal.layout == "texas_csv"

    @pytest.mark.asyncio
    async def test_create_rejects_duplicates_and_unknown_codes(self, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault))
        portals = PortalConfigService(mock_db_session, vault)

        with pytest.raises(ConfigurationError, match="already exists"):
            await portals.create_portal("GA", "u", "p")
        with pytest.raises(ConfigurationError):
            await portals.create_portal("ZZ", "u", "p")
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_rotate_credentials(self, mock_db_session, vault):
        portal = make_portal(vault)
        db_returning(mock_db_session, portal)

        await PortalConfigService(mock_db_session, vault).rotate_credentials("GA", "new-user", "new-pass")

        assert vault.decrypt_credentials(portal.credentials_encrypted)["password"] == "new-pass"
        assert portal.credentials_rotated_at is not None
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_status(self, mock_db_session, vault):
        portal = make_portal(vault)
        db_returning(mock_db_session, portal)
        portals = PortalConfigService(mock_db_session, vault)

        await portals.set_status("GA", "maintenance")
        assert portal.status == "maintenance"

        with pytest.raises(ConfigurationError, match="Invalid portal status"):
            await portals.set_status("GA", "deleted")

    @pytest.mark.asyncio
    async def test_missing_portal(self, mock_db_session, vault):
        db_returning(mock_db_session)
        with pytest.raises(ResourceNotFoundError, match="No state portal configured for AL"):
            await PortalConfigService(mock_db_session, vault).require_portal("al")

    @pytest.mark.asyncio
    async def test_use_backup_code(self, mock_db_session, vault):
        portal = make_portal(vault, backup_codes_encrypted=vault.encrypt_backup_codes(["AAAA1111", "BBBB2222"]))
        db_returning(mock_db_session, portal)
        portals = PortalConfigService(mock_db_session, vault)

        assert await portals.use_backup_code("GA", "aaaa1111") == 1
        assert vault.decrypt_backup_codes(portal.backup_codes_encrypted) == ["BBBB2222"]

        with pytest.raises(ConfigurationError, match="Backup code not recognised"):
            await portals.use_backup_code("GA", "AAAA1111")

    @pytest.mark.asyncio
    async def test_list_portals(self, mock_db_session, vault):
        ga, tx = make_portal(vault), make_portal(vault, jurisdiction_code="TX")
        db_returning(mock_db_session, ga, tx)
        assert await PortalConfigService(mock_db_session, vault).list_portals() == [ga, tx]


# =============================================================================
# Submission workflow
# =============================================================================


class TestResolveCredentials:
    def test_plain_credentials(self, service, vault):
        credentials = service.resolve_credentials(make_portal(vault))
        assert credentials.user_id == "ga-user"
        assert credentials.password == "ga-pass"
        assert credentials.mfa_token is None
        assert "ga-pass" not in repr(credentials)

    def test_totp_token_generated(self, service, vault):
        portal = make_portal(vault, mfa_type="totp", mfa_secret_encrypted=vault.encrypt(TOTP_SECRET))
        token = service.resolve_credentials(portal).mfa_token
        assert token is not None
        assert len(token) == 6
        assert token.isdigit()

    def test_backup_code_offered(self, service, vault):
        portal = make_portal(
            vault, mfa_type="backup_code", backup_codes_encrypted=vault.encrypt_backup_codes(["CCCC3333"])
        )
        assert service.resolve_credentials(portal).mfa_token == "CCCC3333"

    def test_challenge_answers_opened(self, service, vault):
        portal = make_portal(
            vault,
            challenge_questions=vault.encrypt_challenge_questions([{"question": "City?", "answer": "Macon"}]),
        )
        assert service.resolve_credentials(portal).challenge_questions == [{"question": "City?", "answer": "Macon"}]

    def test_missing_credentials(self, service, vault):
        with pytest.raises(ConfigurationError, match="has no credentials"):
            service.resolve_credentials(make_portal(vault, credentials_encrypted=None))


class TestSubmission:
    @pytest.mark.asyncio
    async def test_build_submission(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault))

        submission = await service.build_submission("GA", [make_record(), make_record(first_name="Ana")])

        assert submission.jurisdiction == "GA"
        assert submission.record_count == 2
        assert submission.remote_path == "GA.DIR;1/GANOELEVENTXT.txt"
        assert all(len(line) == 1051 for line in submission.lines)
        assert "ga-pass" in submission.lines[0]

    @pytest.mark.asyncio
    async def test_inactive_portal_rejected(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault, status="maintenance"))
        with pytest.raises(ConfigurationError, match="GA portal is maintenance"):
            await service.build_submission("GA", [make_record()])

    @pytest.mark.asyncio
    async def test_batch_over_portal_limit(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault, max_batch_size=1))
        with pytest.raises(SubmissionValidationError, match="exceeds portal limit of 1"):
            await service.build_submission("GA", [make_record(), make_record()])

    @pytest.mark.asyncio
    async def test_invalid_records_listed(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault))

        with pytest.raises(SubmissionValidationError) as exc_info:
            await service.build_submission("GA", [make_record(ssn="12345"), make_record(city="")])

        assert exc_info.value.errors == [
            "Record 1 (Maria Lopez): SSN must be 9 digits (###-##-#### or #########)",
            "Record 2 (Maria Lopez): City required",
        ]

    @pytest.mark.asyncio
    async def test_preview(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault))
        preview = await service.preview("GA", [make_record()] * 3, limit=2)
        assert preview.record_count == 3
        assert preview.line_count == 3
        assert len(preview.preview.split("\n")) == 2

    @pytest.mark.asyncio
    async def test_upload_uses_portal_credentials(self, service, mock_db_session, vault, transports):
        db_returning(mock_db_session, make_portal(vault, host="ga-sftp.test", port=2222))

        result = await service.upload("GA", [make_record(), make_record()])

        assert result.success is True
        transport = transports[0]
        assert transport.credentials.username == "ga-user"
        assert transport.credentials.password == "ga-pass"
        assert transport.credentials.host == "ga-sftp.test"
        assert transport.credentials.port == 2222
        jurisdiction, content = transport.uploads[0]
        assert jurisdiction == "GA"
        assert isinstance(content, bytes)
        assert content.count(b"\n") == 1

    @pytest.mark.asyncio
    async def test_backup_code_consumed_by_each_login(self, service, mock_db_session, vault):
        portal = make_portal(
            vault, mfa_type="backup_code", backup_codes_encrypted=vault.encrypt_backup_codes(["CCCC3333", "DDDD4444"])
        )
        db_returning(mock_db_session, portal)

        first = await service.login_credentials(portal)
        assert first.mfa_token == "CCCC3333"
        assert vault.decrypt_backup_codes(portal.backup_codes_encrypted) == ["DDDD4444"]

        await service.upload("GA", [make_record()])
        assert vault.decrypt_backup_codes(portal.backup_codes_encrypted) == []

    @pytest.mark.asyncio
    async def test_preview_does_not_consume_backup_code(self, service, mock_db_session, vault):
        portal = make_portal(
            vault, mfa_type="backup_code", backup_codes_encrypted=vault.encrypt_backup_codes(["CCCC3333"])
        )
        db_returning(mock_db_session, portal)

        await service.preview("GA", [make_record()])

        assert vault.decrypt_backup_codes(portal.backup_codes_encrypted) == ["CCCC3333"]

    @pytest.mark.asyncio
    async def test_upload_failure_returned_not_raised(self, service, mock_db_session, vault, transport_factory):
        db_returning(mock_db_session, make_portal(vault))
        failure = UploadResult(success=False, jurisdiction="GA", error="Connection failed: refused")

        def failing_factory(credentials):
            transport = transport_factory(credentials)
            transport.upload_result = failure
            return transport

        service.transport_factory = failing_factory
        assert await service.upload("GA", [make_record()]) is failure

    @pytest.mark.asyncio
    async def test_download_determinations(self, service, mock_db_session, vault):
        db_returning(mock_db_session, make_portal(vault))
        download = await service.download_determinations("ga")
        assert download.success is True
        assert download.jurisdiction == "GA"

    @pytest.mark.asyncio
    async def test_connection_with_default_credentials(self, service, transports):
        check = await service.test_connection()
        assert check.success is True
        assert transports[0].credentials.username == "csdc-user"

    @pytest.mark.asyncio
    async def test_connection_for_portal(self, service, mock_db_session, vault, transports):
        db_returning(mock_db_session, make_portal(vault))
        await service.test_connection("GA")
        assert transports[0].credentials.username == "ga-user"


def test_totp_secret_is_valid():
    assert len(generate_totp_token(TOTP_SECRET)) == 6
