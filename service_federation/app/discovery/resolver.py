"""
Instance resolution against the Cloud Foundry API.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shared.config import ServiceConfig
from shared.errors import ResolveFailed
from shared.logging import get_logger

# Refresh the OAuth token this many seconds before UAA says it expires.
TOKEN_EXPIRY_MARGIN_SECONDS = 30.0


@dataclass(frozen=True)
class AppInstances:
    """Instance count and name of an application at resolve time."""
    instance_count: int
    app_name: str


class InstanceResolver:
    """Resolves how many instances an application runs.

    Only the UAA access token is cached; instance counts and names are
    looked up again on every call.
    """

    def __init__(self, config: ServiceConfig, client: Optional[httpx.AsyncClient] = None):
        self.api_url = config.api.rstrip('/')
        self.username = config.cf_user
        self.password = config.cf_pass.get_secret_value()
        self.timeout = config.resolve_timeout_seconds
        self.logger = get_logger("federation.resolver")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.timeout,
            verify=not config.skip_ssl_validation
        )
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def resolve(self, app_guid: str) -> AppInstances:
        """Look up the application's name and current instance count."""
        try:
            app = await self._api_get(f"/v3/apps/{app_guid}")
            process = await self._api_get(f"/v3/apps/{app_guid}/processes/web")
        except httpx.TimeoutException:
            self.logger.error("Platform API timeout", app_guid=app_guid)
            raise ResolveFailed("Platform API timeout", {"app_guid": app_guid})
        except httpx.RequestError as e:
            self.logger.error("Platform API request error", app_guid=app_guid, error=str(e))
            raise ResolveFailed("Platform API unavailable", {"app_guid": app_guid, "error": str(e)})

        try:
            instances = AppInstances(
                instance_count=int(process["instances"]),
                app_name=str(app["name"])
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ResolveFailed("Malformed platform API response", {"app_guid": app_guid, "error": str(e)})

        if instances.instance_count < 0:
            raise ResolveFailed("Negative instance count", {"app_guid": app_guid})

        self.logger.debug(
            "Application resolved",
            app_guid=app_guid,
            app_name=instances.app_name,
            instance_count=instances.instance_count
        )
        return instances

    async def _api_get(self, path: str) -> Dict[str, Any]:
        """GET a platform API resource, refreshing the token once on 401."""
        response = await self._client.get(
            f"{self.api_url}{path}",
            headers=await self._auth_headers()
        )
        if response.status_code == 401:
            self.logger.info("Platform API rejected token, refreshing", path=path)
            self._token = None
            response = await self._client.get(
                f"{self.api_url}{path}",
                headers=await self._auth_headers()
            )

        if response.status_code == 404:
            raise ResolveFailed("Application not found", {"path": path})
        if response.status_code != 200:
            self.logger.warning(
                "Platform API request failed",
                path=path,
                status_code=response.status_code,
                response=response.text[:512]
            )
            raise ResolveFailed(
                f"Platform API returned {response.status_code}",
                {"path": path, "status_code": response.status_code}
            )
        return self._json(response, path)

    async def _auth_headers(self) -> Dict[str, str]:
        if self._token is None or time.monotonic() >= self._token_expires_at:
            await self._authenticate()
        return {"Authorization": f"bearer {self._token}", "Accept": "application/json"}

    async def _authenticate(self):
        """Obtain an access token with the UAA password grant."""
        token_url = f"{await self._login_url()}/oauth/token"
        response = await self._client.post(
            token_url,
            data={
                "grant_type": "password",
                "username": self.username,
                "password": self.password
            },
            auth=("cf", ""),
            headers={"Accept": "application/json"}
        )
        if response.status_code != 200:
            self.logger.warning("Platform authentication failed", status_code=response.status_code)
            raise ResolveFailed(
                "Platform authentication failed",
                {"status_code": response.status_code}
            )

        payload = self._json(response, "/oauth/token")
        token = payload.get("access_token")
        if not token:
            raise ResolveFailed("Platform authentication returned no access token")

        try:
            expires_in = float(payload.get("expires_in", 0) or 0)
        except (TypeError, ValueError) as e:
            raise ResolveFailed("Malformed token response", {"error": str(e)})
        self._token = token
        self._token_expires_at = time.monotonic() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        self.logger.info("Platform token acquired", expires_in=expires_in)

    async def _login_url(self) -> str:
        """Discover the UAA login endpoint from the API root document."""
        response = await self._client.get(f"{self.api_url}/", headers={"Accept": "application/json"})
        if response.status_code != 200:
            raise ResolveFailed(
                "Platform API root unavailable",
                {"status_code": response.status_code}
            )

        links = self._json(response, "/").get("links") or {}
        for key in ("login", "uaa"):
            href = (links.get(key) or {}).get("href")
            if href:
                return href.rstrip('/')
        raise ResolveFailed("Platform API root advertises no login endpoint")

    def _json(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ResolveFailed("Platform API returned invalid JSON", {"path": path, "error": str(e)})
        if not isinstance(payload, dict):
            raise ResolveFailed("Platform API returned unexpected payload", {"path": path})
        return payload

    async def aclose(self):
        """Close the HTTP client if this resolver created it."""
        if self._owns_client:
            await self._client.aclose()
