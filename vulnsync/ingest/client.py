"""Async Snyk REST API client for package vulnerability lookups."""

from __future__ import annotations

import httpx
from packageurl import PackageURL

from vulnsync.config import settings
from vulnsync.exceptions import FetchError
from vulnsync.purl import encode_purl_path


class SnykClient:
    """Async context manager wrapping httpx.AsyncClient for the Snyk REST API."""

    def __init__(
        self,
        token: str,
        api_url: str = "",
        org_id: str = "",
        api_version: str = "",
        auth_scheme: str = "",
        timeout: float = 0,
    ):
        self.token = token
        self.api_url = (api_url or settings.api_base_url).rstrip("/")
        self.org_id = org_id or settings.org_id
        self.api_version = api_version or settings.api_version
        self.auth_scheme = auth_scheme or settings.auth_scheme
        self.timeout = timeout or settings.request_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SnykClient:
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Accept": "application/vnd.api+json",
                "Authorization": f"{self.auth_scheme} {self.token}",
            },
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("SnykClient must be used as async context manager")
        return self._client

    def issues_path(self, coordinate: PackageURL) -> str:
        return f"/orgs/{self.org_id}/packages/{encode_purl_path(coordinate)}/issues"

    async def get_package_issues(self, coordinate: PackageURL) -> dict:
        """Fetch the vulnerability payload for one package version.

        Raises FetchError for any status other than 200 and for transport
        failures.
        """
        path = self.issues_path(coordinate)
        try:
            resp = await self.client.get(path, params={"version": self.api_version})
        except httpx.HTTPError as exc:
            raise FetchError(f"Request to {self.api_url}{path} failed: {exc}", url=path) from exc

        if resp.status_code != 200:
            raise FetchError(
                f"Unexpected response from {self.api_url}: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                url=str(resp.request.url),
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise FetchError(
                f"Invalid JSON from {self.api_url}{path}: {exc}",
                status_code=resp.status_code,
                url=str(resp.request.url),
            ) from exc
        if not isinstance(body, dict):
            raise FetchError(
                f"Expected a JSON object from {self.api_url}{path}",
                status_code=resp.status_code,
                url=str(resp.request.url),
            )
        return body
