import logging
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import Field, AliasChoices, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("wotc_sync.config")


# Known insecure default values that must be changed in production
_INSECURE_SECRET_KEYS = {
    "your-secret-key-change-this-in-production-min-32-chars",
    "changeme",
    "secret",
    "development-secret",
}
_INSECURE_DB_PASSWORDS = {
    "postgres",
    "password",
    "changeme",
}


def _extract_password_from_database_url(database_url: str | None) -> str | None:
    if not database_url:
        return None
    try:
        return urlsplit(database_url).password
    except ValueError:
        return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_parse_delimiter=",", extra="ignore")
    PROJECT_NAME: str = "WOTC Sync Engine"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "BACKEND_CORS_ORIGINS"),
    )

    # Database settings
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = Field(
        default="db",
        validation_alias=AliasChoices("POSTGRES_SERVER", "POSTGRES_HOST", "POSTGRES_HOSTNAME"),
    )
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "wotc"

    DB_POOL_SIZE: int = Field(default=10, description="Number of persistent DB connections")
    DB_MAX_OVERFLOW: int = Field(default=20, description="Max additional connections under load")

    # Full DB URL (preferred in CI/containers). If not provided, we build it from POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SQLALCHEMY_DATABASE_URI"),
    )
    SQLALCHEMY_ECHO: bool = False

    # Security settings
    SECRET_KEY: str = Field(
        default="your-secret-key-change-this-in-production-min-32-chars",
        validation_alias=AliasChoices("SESSION_SECRET", "SECRET_KEY"),
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Rate limiting (slowapi). memory:// is per process; point at redis:// when running several workers
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Credential vault (AES-256-GCM). urlsafe base64 of 32 random bytes.
    # Generate with: python -c "import os, base64; print(base64.urlsafe_b64encode(os.urandom(32)).decode())"
    VAULT_ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("VAULT_ENCRYPTION_KEY", "CREDENTIAL_ENCRYPTION_KEY"),
    )
    # Raise on corrupt ciphertext instead of returning the stored value
    VAULT_FAIL_CLOSED: bool = False

    # State submission transport (CSDC SFTP)
    SFTP_HOST: str = Field(default="hermes.csdco.com", validation_alias=AliasChoices("SFTP_HOST", "CSDC_SFTP_HOST"))
    SFTP_PORT: int = Field(default=22, validation_alias=AliasChoices("SFTP_PORT", "CSDC_SFTP_PORT"))
    SFTP_USERNAME: Optional[str] = Field(default=None, validation_alias=AliasChoices("SFTP_USERNAME", "CSDC_SFTP_USERNAME"))
    SFTP_PASSWORD: Optional[str] = Field(default=None, validation_alias=AliasChoices("SFTP_PASSWORD", "CSDC_SFTP_PASSWORD"))
    SFTP_KNOWN_HOSTS: Optional[str] = None  # None disables host key checking
    SFTP_CONNECT_TIMEOUT_SECONDS: float = 30.0
    SFTP_OPERATION_TIMEOUT_SECONDS: float = 60.0

    # Optional SSH jump host in front of the state server
    SFTP_PROXY_HOST: Optional[str] = Field(default=None, validation_alias=AliasChoices("SFTP_PROXY_HOST", "CSDC_PROXY_HOST"))
    SFTP_PROXY_PORT: int = 22
    SFTP_PROXY_USERNAME: Optional[str] = None
    SFTP_PROXY_PRIVATE_KEY: Optional[str] = None
    SFTP_PROXY_PRIVATE_KEY_PATH: Optional[str] = None

    # Sync scheduling
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_DEFAULT_RETRY_ATTEMPTS: int = 3
    SYNC_DEFAULT_RETRY_DELAY_SECONDS: float = 5.0
    SYNC_PAYROLL_LOOKBACK_DAYS: int = 30

    # Provider HTTP calls
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Inbound webhooks. When unset, signatures are not checked.
    WEBHOOK_SIGNING_SECRET: Optional[str] = None

    # OAuth client credentials used for token refresh
    ADP_CLIENT_ID: Optional[str] = None
    ADP_CLIENT_SECRET: Optional[str] = None
    GUSTO_CLIENT_ID: Optional[str] = None
    GUSTO_CLIENT_SECRET: Optional[str] = None
    QUICKBOOKS_CLIENT_ID: Optional[str] = None
    QUICKBOOKS_CLIENT_SECRET: Optional[str] = None
    GREENHOUSE_CLIENT_ID: Optional[str] = None
    GREENHOUSE_CLIENT_SECRET: Optional[str] = None

    @computed_field
    @property
    def IS_PRODUCTION(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def model_post_init(self, __context):
        """
        Validate configuration on startup. In production, fail hard if insecure defaults are detected.
        """
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        is_prod = self.ENVIRONMENT.lower() == "production"
        errors = []

        if is_prod and (self.SECRET_KEY in _INSECURE_SECRET_KEYS or len(self.SECRET_KEY) < 32):
            errors.append(
                "SECRET_KEY is insecure. Generate a new key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if is_prod:
            db_url_password = _extract_password_from_database_url(self.DATABASE_URL)
            if db_url_password and db_url_password in _INSECURE_DB_PASSWORDS:
                errors.append("DATABASE_URL contains an insecure password.")

        # The vault must never derive its key from SECRET_KEY in production
        if is_prod and not self.VAULT_ENCRYPTION_KEY:
            errors.append(
                "VAULT_ENCRYPTION_KEY is required in production. Generate with: "
                "python -c \"import os, base64; print(base64.urlsafe_b64encode(os.urandom(32)).decode())\""
            )

        if is_prod and self.SFTP_PROXY_HOST and not (self.SFTP_PROXY_PRIVATE_KEY or self.SFTP_PROXY_PRIVATE_KEY_PATH):
            errors.append("SFTP_PROXY_PRIVATE_KEY or SFTP_PROXY_PRIVATE_KEY_PATH is required when SFTP_PROXY_HOST is set.")

        if self.SYNC_DEFAULT_RETRY_ATTEMPTS < 0:
            errors.append("SYNC_DEFAULT_RETRY_ATTEMPTS must not be negative.")

        if is_prod and self.DEBUG:
            errors.append("DEBUG must be False in production.")

        if is_prod and not self.SFTP_KNOWN_HOSTS:
            logger.warning(
                "SFTP_KNOWN_HOSTS is not set: state portal host keys will not be verified. "
                "Point it at a known_hosts file for production submissions."
            )

        # Fail hard with all errors at once for easier debugging
        if errors:
            error_msg = "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)


settings = Settings()
