"""
Metrics retrieval from individual application instances.
"""

from typing import Optional

import httpx

from shared.config import ServiceConfig
from shared.errors import FetchFailed
from shared.logging import get_logger

# Gorouter header selecting one instance behind the shared route.
INSTANCE_HEADER = "X-Cf-App-Instance"


class InstanceFetcher:
    """Fetches the metrics document of one instance per call."""

    def __init__(self, config: ServiceConfig, client: Optional[httpx.AsyncClient] = None):
        self.metrics_url = config.instance_metrics_url
        self.timeout = config.fetch_timeout_seconds
        self.logger = get_logger("federation.fetcher")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.timeout,
            verify=not config.skip_ssl_validation
        )

    async def fetch(self, app_guid: str, instance_number: int) -> bytes:
        """Return the raw metrics body served by ``instance_number``."""
        instance_id = f"{app_guid}:{instance_number}"
        try:
            response = await self._client.get(
                self.metrics_url,
                headers={INSTANCE_HEADER: instance_id},
                timeout=self.timeout
            )
        except httpx.TimeoutException:
            raise FetchFailed(instance_number, f"timed out after {self.timeout}s", {"timeout": True})
        except httpx.RequestError as e:
            raise FetchFailed(instance_number, f"request error: {e}")

        if response.status_code != 200:
            raise FetchFailed(
                instance_number,
                f"unexpected status {response.status_code}",
                {"status_code": response.status_code}
            )

        self.logger.debug(
            "Instance metrics fetched",
            instance_id=instance_id,
            size_bytes=len(response.content)
        )
        return response.content

    async def aclose(self):
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()
