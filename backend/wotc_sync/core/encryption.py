"""
Credential vault for state portal and provider secrets.

Uses AES-256-GCM with a fresh 16-byte nonce per value. Ciphertext is stored as
three base64 segments, ``iv:authTag:ciphertext``. Values without that shape are
treated as legacy plaintext and pass through decrypt unchanged.
"""

import base64
import binascii
import logging
import os
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import String, TypeDecorator

from wotc_sync.core.config import settings
from wotc_sync.core.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger("wotc_sync.encryption")

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
SEPARATOR = ":"


class CredentialVault:
    """
    Authenticated symmetric encryption for secrets at rest.

    Usage:
        vault = get_vault()
        sealed = vault.encrypt("portal-password")
        vault.decrypt(sealed)  # "portal-password"

    ``decrypt`` is fail-open: a value that looks like ciphertext but fails
    authentication is logged and returned as stored. Use ``decrypt_strict`` (or
    set VAULT_FAIL_CLOSED) to raise DecryptionError instead.
    """

    def __init__(self, key: bytes, fail_closed: bool = False):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Vault key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aead = AESGCM(key)
        self.fail_closed = fail_closed

    @classmethod
    def from_settings(cls) -> "CredentialVault":
        """Build a vault from VAULT_ENCRYPTION_KEY, or a SECRET_KEY-derived key outside production."""
        encoded = settings.VAULT_ENCRYPTION_KEY or os.getenv("VAULT_ENCRYPTION_KEY")
        if encoded:
            try:
                key = base64.urlsafe_b64decode(encoded.encode())
            except (binascii.Error, ValueError) as e:
                raise ConfigurationError(f"VAULT_ENCRYPTION_KEY is not valid base64: {e}")
        elif settings.ENVIRONMENT.lower() != "production":
            logger.warning(
                "VAULT_ENCRYPTION_KEY not set. Using derived key from SECRET_KEY. "
                "Set VAULT_ENCRYPTION_KEY in production."
            )
            key = derive_key(settings.SECRET_KEY)
        else:
            raise ConfigurationError("VAULT_ENCRYPTION_KEY must be set in production.")

        return cls(key, fail_closed=settings.VAULT_FAIL_CLOSED)

    @staticmethod
    def generate_key() -> str:
        """Generate a new urlsafe-base64 vault key."""
        return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode()

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return plaintext

        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return SEPARATOR.join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, value: str) -> str:
        if self.fail_closed:
            return self.decrypt_strict(value)
        try:
            return self.decrypt_strict(value)
        except DecryptionError as e:
            logger.error(f"Decryption failed, returning stored value: {e}")
            return value

    def decrypt_strict(self, value: str) -> str:
        """
        Decrypt a sealed value.

        Legacy plaintext (no separator, or not exactly three segments) is
        returned unchanged. Raises DecryptionError if the value has the
        ciphertext shape but cannot be authenticated.
        """
        if not value or SEPARATOR not in value:
            return value

        parts = value.split(SEPARATOR)
        if len(parts) != 3:
            return value

        try:
            iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch (wrong key or tampered data)")
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Malformed ciphertext: {e}")

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        """Check whether a value has the ``iv:tag:ciphertext`` shape."""
        if not value:
            return False
        parts = value.split(SEPARATOR)
        if len(parts) != 3:
            return False
        try:
            iv = base64.b64decode(parts[0], validate=True)
            tag = base64.b64decode(parts[1], validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(iv) == IV_LENGTH and len(tag) == TAG_LENGTH

    # Composite helpers

    def encrypt_credentials(self, credentials: Dict[str, str]) -> Dict[str, str]:
        return {
            "userId": self.encrypt(credentials.get("userId", "")),
            "password": self.encrypt(credentials.get("password", "")),
        }

    def decrypt_credentials(self, credentials: Dict[str, str]) -> Dict[str, str]:
        return {
            "userId": self.decrypt(credentials.get("userId", "")),
            "password": self.decrypt(credentials.get("password", "")),
        }

    def encrypt_challenge_questions(self, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Encrypt the answers of security challenge questions. Questions stay readable."""
        return [
            {**q, "answer": self.encrypt(q.get("answer", ""))}
            for q in questions
        ]

    def decrypt_challenge_questions(self, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {**q, "answer": self.decrypt(q.get("answer", ""))}
            for q in questions
        ]

    def encrypt_backup_codes(self, codes: List[str]) -> List[str]:
        return [self.encrypt(code) for code in codes]

    def decrypt_backup_codes(self, codes: List[str]) -> List[str]:
        return [self.decrypt(code) for code in codes]


def derive_key(secret: str) -> bytes:
    """Derive a 32-byte vault key from SECRET_KEY using PBKDF2 (development only)."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=b"wotc_sync_vault_dev_salt_v1",
        iterations=100000,
    )
    return kdf.derive(secret.encode())


# Global vault instance
_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Get the global credential vault."""
    global _vault
    if _vault is None:
        _vault = CredentialVault.from_settings()
        logger.info("Credential vault initialized")
    return _vault


def encrypt_field(value: str) -> str:
    """Convenience function to encrypt a single value."""
    return get_vault().encrypt(value)


def decrypt_field(value: str) -> str:
    """Convenience function to decrypt a single value."""
    return get_vault().decrypt(value)


class EncryptedString(TypeDecorator):
    """
    SQLAlchemy type that seals values with the credential vault.

    Usage:
        class IntegrationConnection(Base):
            access_token = Column(EncryptedString(2000))
    """

    impl = String
    cache_ok = True

    def __init__(self, length: int = 1000, *args, **kwargs):
        super().__init__(length, *args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is not None:
            return get_vault().encrypt(str(value))
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return get_vault().decrypt(value)
        return value
