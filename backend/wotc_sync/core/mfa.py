"""
One-time codes for state portals that require multi-factor authentication.

TOTP parameters follow RFC 6238 defaults used by authenticator apps:
6 digits, 30 second period, SHA-1, base32 shared secret.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import List, Optional

import pyotp

logger = logging.getLogger("wotc_sync.mfa")

TOTP_DIGITS = 6
TOTP_PERIOD_SECONDS = 30
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_COUNT = 10
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits

GENERATED_MFA_TYPES = {"totp", "authenticator_app"}
MANUAL_MFA_TYPES = {"sms", "email"}
BACKUP_CODE_MFA_TYPE = "backup_code"


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS)


def generate_totp_token(secret: str, for_time: Optional[datetime] = None) -> str:
    """Return the 6-digit code for the current (or given) time step."""
    totp = _totp(secret)
    if for_time is not None:
        return totp.at(for_time)
    return totp.now()


def validate_totp_token(
    code: str,
    secret: str,
    window: int = 1,
    for_time: Optional[datetime] = None,
) -> bool:
    """Accept codes from the current step or up to ``window`` steps either side."""
    if not code or not secret:
        return False
    return _totp(secret).verify(code, for_time=for_time, valid_window=window)


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    return [
        "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
        for _ in range(count)
    ]


def consume_backup_code(code: str, codes: List[str]) -> List[str]:
    """Return the remaining codes after using ``code`` once."""
    normalized = code.strip().upper()
    if normalized not in codes:
        raise ValueError("Backup code not recognised")
    remaining = list(codes)
    remaining.remove(normalized)
    return remaining


def get_mfa_token(
    mfa_type: Optional[str],
    secret: Optional[str],
    backup_codes: Optional[List[str]] = None,
) -> Optional[str]:
    """
    Resolve a login code for a portal.

    Authenticator-style portals get a generated code. SMS and e-mail portals
    need an operator to enter the code manually, so None is returned.
    Portals configured for backup codes get the first unused one; the caller
    is responsible for consuming it with consume_backup_code.
    """
    if not mfa_type:
        return None

    kind = mfa_type.lower()
    if kind in GENERATED_MFA_TYPES:
        if not secret:
            logger.warning(f"MFA type '{kind}' configured without a shared secret")
            return None
        return generate_totp_token(secret)

    if kind == BACKUP_CODE_MFA_TYPE:
        if not backup_codes:
            logger.warning("No backup codes remaining")
            return None
        return backup_codes[0]

    if kind in MANUAL_MFA_TYPES:
        logger.warning(f"MFA type '{kind}' requires manual code entry")
        return None

    logger.warning(f"Unknown MFA type: {mfa_type}")
    return None
