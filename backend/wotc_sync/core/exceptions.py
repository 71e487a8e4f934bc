"""
Error taxonomy for the sync engine.

ConfigurationError is fatal to the call that raised it. Connection errors abort
the current batch or job and are eligible for job-level retry. RecordError is
accumulated per record and never retried.
"""


class IntegrationError(Exception):
    """Base class for all sync engine errors."""
    pass


class ConfigurationError(IntegrationError):
    """Unknown jurisdiction, unknown job type, missing connection or credentials."""
    pass


class ResourceNotFoundError(ConfigurationError):
    """A referenced connection or portal does not exist."""
    pass


class SubmissionValidationError(ConfigurationError):
    """A submission batch or record cannot be encoded as requested."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class IntegrationConnectionError(IntegrationError):
    """Remote endpoint unreachable, authentication rejected, or timed out."""
    pass


class TransportConnectionError(IntegrationConnectionError):
    """SFTP session could not be established or was lost."""
    pass


class ProviderConnectionError(IntegrationConnectionError):
    """Payroll/ATS provider API could not be reached or rejected the call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RecordError(IntegrationError):
    """A single fetched record could not be reconciled."""

    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


class DecryptionError(IntegrationError):
    """Stored ciphertext is corrupt or was sealed with another key."""
    pass
