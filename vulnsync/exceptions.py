"""Exception hierarchy for vulnsync.

- VulnSyncError (base)
  ├── ConfigurationError (missing settings, unknown API version)
  │   └── CredentialError (missing or unusable API token)
  ├── FetchError (non-200 responses and transport failures)
  ├── PayloadError (vendor payloads that cannot be stored)
  └── StoreError (persistence failures)
"""


class VulnSyncError(Exception):
    """Base exception for vulnsync."""


class ConfigurationError(VulnSyncError):
    """Raised when the run cannot start because of invalid configuration."""


class CredentialError(ConfigurationError):
    """Raised when no usable API token is available."""


class FetchError(VulnSyncError):
    """Raised when a lookup against the vulnerability source fails."""

    def __init__(self, message: str, status_code: int | None = None, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class PayloadError(VulnSyncError):
    """Raised when a decoded payload is missing data required for storage."""


class StoreError(VulnSyncError):
    """Raised when the vulnerability store rejects a write."""
