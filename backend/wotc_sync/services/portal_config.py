"""
State portal configuration management.

Portal credentials, MFA secrets, backup codes and challenge answers are
sealed with the credential vault before they reach the database. Portals are
never deleted; they are disabled.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wotc_sync.codecs.layouts import get_jurisdiction
from wotc_sync.core.encryption import CredentialVault, get_vault
from wotc_sync.core.exceptions import ConfigurationError, ResourceNotFoundError
from wotc_sync.core.mfa import consume_backup_code
from wotc_sync.models.portal import PORTAL_STATUSES, StatePortalConfig

logger = logging.getLogger("wotc_sync.portals")


class PortalConfigService:
    def __init__(self, db: AsyncSession, vault: Optional[CredentialVault] = None):
        self.db = db
        self.vault = vault or get_vault()

    async def get_portal(self, jurisdiction: str) -> Optional[StatePortalConfig]:
        result = await self.db.execute(
            select(StatePortalConfig).where(StatePortalConfig.jurisdiction_code == jurisdiction.upper())
        )
        return result.scalars().first()

    async def require_portal(self, jurisdiction: str) -> StatePortalConfig:
        portal = await self.get_portal(jurisdiction)
        if portal is None:
            raise ResourceNotFoundError(f"No state portal configured for {jurisdiction.upper()}")
        return portal

    async def list_portals(self) -> List[StatePortalConfig]:
        result = await self.db.execute(select(StatePortalConfig).order_by(StatePortalConfig.jurisdiction_code))
        return list(result.scalars().all())

    async def create_portal(
        self,
        jurisdiction: str,
        user_id: str,
        password: str,
        mfa_type: Optional[str] = None,
        mfa_secret: Optional[str] = None,
        backup_codes: Optional[List[str]] = None,
        challenge_questions: Optional[List[Dict[str, Any]]] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        max_batch_size: Optional[int] = None,
        submission_frequency: str = "weekly",
    ) -> StatePortalConfig:
        """Register a jurisdiction's portal. Raises ConfigurationError for unknown or duplicate codes."""
        profile = get_jurisdiction(jurisdiction)
        if await self.get_portal(profile.code) is not None:
            raise ConfigurationError(f"State portal for {profile.code} already exists")

        portal = StatePortalConfig(
            jurisdiction_code=profile.code,
            jurisdiction_name=profile.name,
            host=host,
            port=port,
            credentials_encrypted=self.vault.encrypt_credentials({"userId": user_id, "password": password}),
            mfa_type=mfa_type,
            mfa_secret_encrypted=self.vault.encrypt(mfa_secret) if mfa_secret else None,
            backup_codes_encrypted=self.vault.encrypt_backup_codes(backup_codes) if backup_codes else None,
            challenge_questions=(
                self.vault.encrypt_challenge_questions(challenge_questions) if challenge_questions else None
            ),
            layout=profile.codec,
            max_batch_size=max_batch_size,
            submission_frequency=submission_frequency,
            status="active",
        )
        self.db.add(portal)
        await self.db.commit()
        logger.info(f"Created state portal config for {profile.code}")
        return portal

    async def rotate_credentials(self, jurisdiction: str, user_id: str, password: str) -> StatePortalConfig:
        portal = await self.require_portal(jurisdiction)
        portal.credentials_encrypted = self.vault.encrypt_credentials({"userId": user_id, "password": password})
        portal.credentials_rotated_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.info(f"Rotated credentials for {portal.jurisdiction_code} portal")
        return portal

    async def set_status(self, jurisdiction: str, status: str) -> StatePortalConfig:
        if status not in PORTAL_STATUSES:
            raise ConfigurationError(f"Invalid portal status '{status}'. Expected one of {', '.join(PORTAL_STATUSES)}")
        portal = await self.require_portal(jurisdiction)
        portal.status = status
        await self.db.commit()
        logger.info(f"{portal.jurisdiction_code} portal is now {status}")
        return portal

    async def use_backup_code(self, jurisdiction: str, code: str) -> int:
        """Consume one backup code and return how many remain."""
        portal = await self.require_portal(jurisdiction)
        codes = self.vault.decrypt_backup_codes(portal.backup_codes_encrypted or [])
        try:
            remaining = consume_backup_code(code, codes)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        portal.backup_codes_encrypted = self.vault.encrypt_backup_codes(remaining)
        await self.db.commit()
        if not remaining:
            logger.warning(f"{portal.jurisdiction_code} portal has no backup codes left")
        return len(remaining)
