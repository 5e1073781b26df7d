"""API token retrieval."""

from __future__ import annotations

from typing import Protocol

from vulnsync.config import Settings, settings
from vulnsync.exceptions import CredentialError


class CredentialProvider(Protocol):
    def get_token(self) -> str:
        """Return the plain API token or raise CredentialError."""
        ...


class SettingsCredentialProvider:
    """Reads the token from VULNSYNC_API_TOKEN."""

    def __init__(self, config: Settings | None = None):
        self.config = config or settings

    def get_token(self) -> str:
        token = self.config.api_token.strip()
        if not token:
            raise CredentialError("Please provide an API token (VULNSYNC_API_TOKEN)")
        return token


class StaticCredentialProvider:
    """Token supplied directly, e.g. from a CLI option."""

    def __init__(self, token: str):
        self.token = token

    def get_token(self) -> str:
        if not self.token:
            raise CredentialError("Empty API token")
        return self.token
