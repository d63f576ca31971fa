"""
Metrics federation service.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Response

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import ConfigurationError

from .discovery.fetcher import InstanceFetcher
from .discovery.resolver import InstanceResolver
from .federation.aggregator import FederationAggregator
from .federation.store import SnapshotStore

EXPOSITION_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class FederationService(BaseService):
    """Federates the metrics of every instance of one application."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        resolver: Optional[InstanceResolver] = None,
        fetcher: Optional[InstanceFetcher] = None,
        store: Optional[SnapshotStore] = None
    ):
        super().__init__("federation", config)

        # Initialize components
        self.store = store or SnapshotStore()
        self.resolver = resolver or InstanceResolver(self.config)
        self.fetcher = fetcher or InstanceFetcher(self.config)
        self.aggregator = FederationAggregator(
            self.config,
            resolver=self.resolver,
            fetcher=self.fetcher,
            store=self.store,
            metrics=self.metrics
        )

        self._setup_federation_routes()

    def _setup_federation_routes(self):
        """Set up federation-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "federation",
                "message": "Metrics Federation Service",
                "version": "1.0.0",
                "app_guid": self.config.app_guid,
                "capabilities": ["resolution", "federation", "export"]
            }

        @self.app.get("/prometheus")
        async def scrape():
            """Serve the current federated snapshot.

            Before the first successful cycle the body is empty; collection
            errors are never reflected in the status code.
            """
            snapshot = self.store.current()
            if snapshot is None:
                return Response(content="", media_type=EXPOSITION_CONTENT_TYPE)

            return Response(
                content=snapshot.text,
                media_type=EXPOSITION_CONTENT_TYPE,
                headers={
                    "X-Snapshot-Generation": str(snapshot.generation),
                    "X-Snapshot-Created-At": snapshot.created_at.isoformat()
                }
            )

        @self.app.get("/federation/status")
        async def federation_status():
            """Report the scheduler state and the last cycle's outcome."""
            return {
                **self.aggregator.get_aggregation_stats(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.post("/federation/collect")
        async def collect_now():
            """Run a collection cycle immediately."""
            self._require_settings()
            result = await self.aggregator.collect()
            return result.summary()

    def _require_settings(self):
        missing = self.config.missing_settings()
        if missing:
            raise ConfigurationError(
                "Required platform settings are not set",
                {"missing": missing}
            )

    async def _check_dependencies(self):
        """Check federation service dependencies."""
        last = self.aggregator.last_result
        if last is None:
            last_cycle = "pending"
        else:
            last_cycle = "ok" if last.succeeded else "failed"

        return {
            "collector": "ok" if self.aggregator.running else "stopped",
            "last_cycle": last_cycle,
            "snapshot": "ok" if self.store.current() is not None else "empty"
        }

    async def start(self):
        """Start federation components."""
        self._require_settings()
        await self.aggregator.start()

        self.logger.info(
            "Federation service components started",
            app_guid=self.config.app_guid,
            app_route=self.config.app_route,
            interval_seconds=self.config.collection_interval_seconds
        )

    async def stop(self):
        """Stop federation components."""
        await self.aggregator.stop()
        await self.fetcher.aclose()
        await self.resolver.aclose()

        self.logger.info("Federation service components stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create federation service application."""
    service = FederationService(config)
    return service.app


if __name__ == "__main__":
    service = FederationService()
    service.run()
