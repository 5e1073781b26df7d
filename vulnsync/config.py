"""Configuration for vulnsync."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with VULNSYNC_ environment variable overrides."""

    enabled: bool = True

    # Snyk REST API
    api_token: str = ""
    auth_scheme: str = "token"
    api_base_url: str = "https://api.snyk.io/rest"
    org_id: str = ""
    api_version: str = "2022-04-06~experimental"
    request_timeout_seconds: float = 30.0

    # Fan-out
    page_size: int = Field(default=100, ge=1)
    concurrency: int = Field(default=10, ge=1)

    # Store
    db_path: str = "vulnsync.db"

    log_level: str = "INFO"

    model_config = {"env_prefix": "VULNSYNC_"}


settings = Settings()
