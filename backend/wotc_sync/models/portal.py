"""
State portal configuration.

One row per jurisdiction. Credentials, MFA secrets, backup codes and
challenge answers are sealed with the credential vault before they are
stored. Rows are never deleted; a retired portal is set to ``disabled``.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func

from wotc_sync.db.base_class import Base


PORTAL_STATUSES = ("active", "maintenance", "disabled")


class StatePortalConfig(Base):
    __tablename__ = "state_portal_configs"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, autoincrement=True)
    jurisdiction_code = Column(String(2), nullable=False, unique=True, index=True)
    jurisdiction_name = Column(String(100), nullable=True)

    # Remote endpoint (falls back to SFTP_HOST/SFTP_PORT when unset)
    host = Column(String(255), nullable=True)
    port = Column(Integer, nullable=True)

    # {"userId": <sealed>, "password": <sealed>}
    credentials_encrypted = Column(JSON, nullable=True)

    # MFA
    mfa_type = Column(String(30), nullable=True)  # totp, authenticator_app, sms, email, backup_code
    mfa_secret_encrypted = Column(String(500), nullable=True)
    backup_codes_encrypted = Column(JSON, nullable=True)  # list of sealed codes
    challenge_questions = Column(JSON, nullable=True)  # [{"question": ..., "answer": <sealed>}]

    # Submission format and limits
    layout = Column(String(40), nullable=False, default="csdc_fixed_width")
    max_batch_size = Column(Integer, nullable=True)
    submission_frequency = Column(String(20), nullable=False, default="weekly")

    status = Column(String(20), nullable=False, default="active", index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    credentials_rotated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


Index('idx_state_portal_configs_status', StatePortalConfig.status)
