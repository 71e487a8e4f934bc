"""
State submission workflow.

Looks up the jurisdiction's portal, opens its sealed credentials, encodes the
batch with the jurisdiction's codec and hands the file to the SFTP transport.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from wotc_sync.codecs import SubmissionFile, SubmissionPreview, SubmissionRecord, encode_batch
from wotc_sync.core.encryption import CredentialVault, get_vault
from wotc_sync.core.exceptions import ConfigurationError, SubmissionValidationError
from wotc_sync.core.metrics import record_upload_metrics
from wotc_sync.core.mfa import BACKUP_CODE_MFA_TYPE, get_mfa_token
from wotc_sync.models.portal import StatePortalConfig
from wotc_sync.services.portal_config import PortalConfigService
from wotc_sync.transport.sftp import (
    ConnectionCheck,
    DeterminationDownload,
    SftpCredentials,
    SftpTransportClient,
    UploadResult,
)

logger = logging.getLogger("wotc_sync.submissions")

TransportFactory = Callable[[SftpCredentials], SftpTransportClient]


@dataclass
class PortalCredentials:
    user_id: str
    password: str
    mfa_token: Optional[str] = None
    challenge_questions: List[Dict[str, Any]] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"PortalCredentials(user_id={self.user_id!r}, password='***')"


class StateSubmissionService:
    """
    Usage:
        service = StateSubmissionService(db)
        submission = await service.build_submission("GA", records)
        result = await service.upload("GA", records)
    """

    def __init__(
        self,
        db: AsyncSession,
        vault: Optional[CredentialVault] = None,
        transport_factory: TransportFactory = SftpTransportClient,
    ):
        self.vault = vault or get_vault()
        self.portals = PortalConfigService(db, self.vault)
        self.transport_factory = transport_factory

    async def active_portal(self, jurisdiction: str) -> StatePortalConfig:
        portal = await self.portals.require_portal(jurisdiction)
        if not portal.is_active:
            raise ConfigurationError(f"{portal.jurisdiction_code} portal is {portal.status}")
        return portal

    def resolve_credentials(self, portal: StatePortalConfig) -> PortalCredentials:
        credentials = self.vault.decrypt_credentials(portal.credentials_encrypted or {})
        if not credentials["userId"]:
            raise ConfigurationError(f"{portal.jurisdiction_code} portal has no credentials")

        secret = self.vault.decrypt(portal.mfa_secret_encrypted) if portal.mfa_secret_encrypted else None
        backup_codes = self.vault.decrypt_backup_codes(portal.backup_codes_encrypted or [])
        return PortalCredentials(
            user_id=credentials["userId"],
            password=credentials["password"],
            mfa_token=get_mfa_token(portal.mfa_type, secret, backup_codes),
            challenge_questions=self.vault.decrypt_challenge_questions(portal.challenge_questions or []),
        )

    async def login_credentials(self, portal: StatePortalConfig) -> PortalCredentials:
        """
        Credentials for a portal login. A backup code handed out here is
        consumed at once so it cannot be offered to a second login.
        """
        credentials = self.resolve_credentials(portal)
        if credentials.mfa_token and (portal.mfa_type or "").lower() == BACKUP_CODE_MFA_TYPE:
            remaining = await self.portals.use_backup_code(portal.jurisdiction_code, credentials.mfa_token)
            logger.info(
                f"Used a backup code for the {portal.jurisdiction_code} portal, {remaining} left",
                extra={"jurisdiction": portal.jurisdiction_code},
            )
        return credentials

    def _transport(self, portal: StatePortalConfig, credentials: PortalCredentials) -> SftpTransportClient:
        return self.transport_factory(
            SftpCredentials.from_settings(
                username=credentials.user_id,
                password=credentials.password,
                host=portal.host,
                port=portal.port,
            )
        )

    def _encode(
        self,
        portal: StatePortalConfig,
        credentials: PortalCredentials,
        records: Sequence[SubmissionRecord],
        validate: bool,
        consultant_ein: str,
    ) -> SubmissionFile:
        if portal.max_batch_size and len(records) > portal.max_batch_size:
            raise SubmissionValidationError(
                f"{portal.jurisdiction_code} batch of {len(records)} exceeds portal limit of {portal.max_batch_size}"
            )
        return encode_batch(
            records,
            portal.jurisdiction_code,
            validate=validate,
            pin_or_password=credentials.password,
            consultant_ein=consultant_ein,
        )

    async def build_submission(
        self,
        jurisdiction: str,
        records: Sequence[SubmissionRecord],
        validate: bool = True,
        consultant_ein: str = "",
    ) -> SubmissionFile:
        """
        Encode a batch for an active portal.

        Raises SubmissionValidationError when the batch exceeds the portal's
        configured batch size or a record fails validation.
        """
        portal = await self.active_portal(jurisdiction)
        return self._encode(portal, self.resolve_credentials(portal), records, validate, consultant_ein)

    async def preview(
        self,
        jurisdiction: str,
        records: Sequence[SubmissionRecord],
        limit: int = 5,
        consultant_ein: str = "",
    ) -> SubmissionPreview:
        submission = await self.build_submission(jurisdiction, records, consultant_ein=consultant_ein)
        return submission.preview(limit)

    async def upload(self, jurisdiction: str, records: Sequence[SubmissionRecord]) -> UploadResult:
        portal = await self.active_portal(jurisdiction)
        credentials = await self.login_credentials(portal)
        submission = self._encode(portal, credentials, records, validate=True, consultant_ein="")

        result = await self._transport(portal, credentials).upload(submission.jurisdiction, submission.to_bytes())
        record_upload_metrics(submission.jurisdiction, result.success)
        if result.success:
            logger.info(f"Submitted {submission.record_count} record(s) to {submission.jurisdiction}")
        else:
            logger.error(f"Submission to {submission.jurisdiction} failed: {result.error}")
        return result

    async def download_determinations(self, jurisdiction: str) -> DeterminationDownload:
        portal = await self.active_portal(jurisdiction)
        transport = self._transport(portal, await self.login_credentials(portal))
        return await transport.download_determinations(portal.jurisdiction_code)

    async def test_connection(self, jurisdiction: Optional[str] = None) -> ConnectionCheck:
        if jurisdiction:
            portal = await self.active_portal(jurisdiction)
            transport = self._transport(portal, await self.login_credentials(portal))
        else:
            transport = self.transport_factory(SftpCredentials.from_settings())
        return await transport.test_connection()
