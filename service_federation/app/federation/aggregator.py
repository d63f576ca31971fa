"""
Collection cycles: resolve instances, fetch and relabel each one, merge,
publish.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shared.config import ServiceConfig
from shared.errors import CycleFailed, FetchFailed, ParseFailed, ResolveFailed
from shared.logging import cycle_id_var, get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, call_with_retry
from shared.tracing import add_span_attributes, trace_operation

from ..discovery.fetcher import InstanceFetcher
from ..discovery.resolver import AppInstances, InstanceResolver
from ..exposition.codec import decode, encode
from ..exposition.models import FamilyCollection, IdentityContext, MetricFamily
from .relabeler import relabel
from .store import Snapshot, SnapshotStore

logger = get_logger("federation.aggregator")


@dataclass(frozen=True)
class InstanceError:
    """Why one instance contributed nothing to a cycle."""
    instance_number: int
    kind: str
    message: str


@dataclass(frozen=True)
class InstanceOutcome:
    """Relabeled families of one instance, or the error that prevented them."""
    instance_number: int
    families: Optional[FamilyCollection] = None
    error: Optional[InstanceError] = None


@dataclass(frozen=True)
class CollectionResult:
    """Outcome of one collection cycle."""
    cycle_id: str
    started_at: datetime
    duration_seconds: float
    instance_count: int
    errors: Tuple[InstanceError, ...] = ()
    snapshot: Optional[Snapshot] = None
    cycle_error: Optional[CycleFailed] = None

    @property
    def succeeded(self) -> bool:
        return self.snapshot is not None

    def summary(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "succeeded": self.succeeded,
            "instance_count": self.instance_count,
            "cycle_error": self.cycle_error.message if self.cycle_error else None,
            "errors": [
                {"instance_number": e.instance_number, "kind": e.kind, "message": e.message}
                for e in self.errors
            ],
            "snapshot_generation": self.snapshot.generation if self.snapshot else None,
            "instances_collected": list(self.snapshot.instances) if self.snapshot else [],
        }


def merge_families(collections: Iterable[Tuple[int, FamilyCollection]]) -> FamilyCollection:
    """Merge per-instance collections by family name.

    Series are concatenated in the order the collections are given. Type and
    help text come from the first collection defining the family; later
    disagreement is logged and otherwise ignored.
    """
    first: Dict[str, MetricFamily] = {}
    series: Dict[str, List] = {}

    for instance_number, families in collections:
        for name, family in families.items():
            seen = first.get(name)
            if seen is None:
                first[name] = family
                series[name] = list(family.series)
                continue

            if seen.type != family.type or seen.documentation != family.documentation:
                logger.warning(
                    "Family metadata differs between instances",
                    family=name,
                    instance_number=instance_number,
                    kept_type=seen.type.value,
                    instance_type=family.type.value
                )
            series[name].extend(family.series)

    return {name: replace(family, series=tuple(series[name])) for name, family in first.items()}


class FederationAggregator:
    """Runs collection cycles and publishes their snapshots."""

    def __init__(
        self,
        config: ServiceConfig,
        resolver: InstanceResolver,
        fetcher: InstanceFetcher,
        store: SnapshotStore,
        metrics: Optional[MetricsCollector] = None
    ):
        self.app_guid = config.app_guid
        self.org_name = config.org_name
        self.space_name = config.space_name
        self.interval_seconds = config.collection_interval_seconds
        self.cycle_timeout_seconds = config.cycle_timeout_seconds
        self.max_concurrent_fetches = config.max_concurrent_fetches
        self.retry_config = RetryConfig(
            max_attempts=config.resolve_retry_attempts,
            base_delay=config.resolve_retry_base_delay,
            max_delay=config.collection_interval_seconds
        )

        self.resolver = resolver
        self.fetcher = fetcher
        self.store = store
        self.metrics = metrics

        self.last_result: Optional[CollectionResult] = None
        self._cycle_lock = asyncio.Lock()
        self.collection_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the scheduled collection loop."""
        self.running = True
        self.collection_task = asyncio.create_task(self._collection_loop())
        logger.info("Federation aggregator started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the scheduled collection loop."""
        self.running = False
        if self.collection_task:
            self.collection_task.cancel()
            try:
                await self.collection_task
            except asyncio.CancelledError:
                pass
            self.collection_task = None

        logger.info("Federation aggregator stopped")

    async def _collection_loop(self):
        """Collect immediately, then every interval."""
        while self.running:
            try:
                await self.collect()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in collection loop", error=str(e), exc_info=e)

            await asyncio.sleep(self.interval_seconds)

    async def collect(self) -> CollectionResult:
        """Run one collection cycle; cycles never overlap."""
        async with self._cycle_lock:
            cycle_id = uuid.uuid4().hex[:12]
            token = cycle_id_var.set(cycle_id)
            try:
                with trace_operation("federation.collect", app_guid=self.app_guid, cycle_id=cycle_id):
                    result = await self._run_cycle(cycle_id)
            finally:
                cycle_id_var.reset(token)

            self.last_result = result
            return result

    async def _run_cycle(self, cycle_id: str) -> CollectionResult:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()

        try:
            app = await call_with_retry(
                self.resolver.resolve,
                self.app_guid,
                exceptions=(ResolveFailed,),
                config=self.retry_config
            )
        except RetryError as e:
            return self._failed(
                cycle_id, started_at, started, 0, (),
                CycleFailed(f"resolve failed: {e.last_exception}", {"stage": "resolving"})
            )

        self._set_gauge("federation_instances", app.instance_count)
        add_span_attributes(app_name=app.app_name, instance_count=app.instance_count)

        outcomes = await self._fetch_all(app)
        errors = tuple(o.error for o in outcomes if o.error is not None)
        for error in errors:
            self._count("federation_instance_failures_total", kind=error.kind)

        successes = [(o.instance_number, o.families) for o in outcomes if o.families is not None]
        if not successes:
            reason = "no instances to collect" if app.instance_count == 0 else "all instances failed"
            return self._failed(
                cycle_id, started_at, started, app.instance_count, errors,
                CycleFailed(reason, {"stage": "fetching"})
            )

        merged = merge_families(successes)
        snapshot = self.store.publish(Snapshot(
            text=encode(merged),
            instance_count=app.instance_count,
            instances=tuple(number for number, _ in successes),
            series_count=sum(len(family.series) for family in merged.values()),
            created_at=datetime.now(timezone.utc)
        ))

        duration = time.monotonic() - started
        outcome = "partial" if errors else "success"
        self._count("federation_cycles_total", outcome=outcome)
        self._observe_duration(duration)
        self._set_gauge("federation_snapshot_generation", snapshot.generation)
        self._set_gauge("federation_snapshot_series", snapshot.series_count)

        log = logger.warning if errors else logger.info
        log(
            "Collection cycle completed",
            outcome=outcome,
            app_name=app.app_name,
            instance_count=app.instance_count,
            failed_instances=[e.instance_number for e in errors],
            generation=snapshot.generation,
            duration_ms=round(duration * 1000, 2)
        )

        return CollectionResult(
            cycle_id=cycle_id,
            started_at=started_at,
            duration_seconds=duration,
            instance_count=app.instance_count,
            errors=errors,
            snapshot=snapshot
        )

    async def _fetch_all(self, app: AppInstances) -> List[InstanceOutcome]:
        """Fan out one task per instance and join them before the cycle deadline."""
        if app.instance_count == 0:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent_fetches)
        tasks = [
            asyncio.create_task(self._collect_instance(self._identity(app, number), semaphore))
            for number in range(app.instance_count)
        ]

        try:
            done, pending = await asyncio.wait(tasks, timeout=self.cycle_timeout_seconds)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes = []
        for number, task in enumerate(tasks):
            if task in done:
                outcomes.append(task.result())
                continue

            error = InstanceError(
                number, "timeout",
                f"cycle deadline of {self.cycle_timeout_seconds}s exceeded"
            )
            logger.warning(
                "Instance collection abandoned",
                instance_number=number,
                cf_instance_id=f"{self.app_guid}:{number}",
                error=error.message
            )
            outcomes.append(InstanceOutcome(number, error=error))
        return outcomes

    async def _collect_instance(self, identity: IdentityContext, semaphore: asyncio.Semaphore) -> InstanceOutcome:
        """Fetch, decode and relabel one instance; failures become an outcome."""
        number = identity.instance_number
        try:
            async with semaphore:
                with trace_operation(
                    "federation.fetch_instance",
                    cf_instance_id=identity.instance_id,
                    cf_instance_number=number
                ):
                    payload = await self.fetcher.fetch(identity.app_guid, number)
                    try:
                        families = decode(payload)
                    except ParseFailed as e:
                        raise e.for_instance(number) from e
            return InstanceOutcome(number, families=relabel(families, identity))

        except FetchFailed as e:
            kind = "timeout" if e.details.get("timeout") else "fetch"
            error = InstanceError(number, kind, e.cause)
        except ParseFailed as e:
            error = InstanceError(number, "parse", e.cause)
        except Exception as e:
            logger.error(
                "Unexpected error collecting instance",
                instance_number=number,
                error=str(e),
                exc_info=e
            )
            error = InstanceError(number, "fetch", f"unexpected error: {e}")

        logger.warning(
            "Instance collection failed",
            instance_number=number,
            cf_instance_id=identity.instance_id,
            app_name=identity.app_name,
            kind=error.kind,
            error=error.message
        )
        return InstanceOutcome(number, error=error)

    def _identity(self, app: AppInstances, instance_number: int) -> IdentityContext:
        return IdentityContext(
            org_name=self.org_name,
            space_name=self.space_name,
            app_name=app.app_name,
            app_guid=self.app_guid,
            instance_number=instance_number
        )

    def _failed(
        self,
        cycle_id: str,
        started_at: datetime,
        started: float,
        instance_count: int,
        errors: Tuple[InstanceError, ...],
        error: CycleFailed
    ) -> CollectionResult:
        """Record a cycle that leaves the current snapshot in place."""
        duration = time.monotonic() - started
        self._count("federation_cycles_total", outcome="failed")
        self._observe_duration(duration)
        if self.metrics:
            self.metrics.record_error(error.code)

        current = self.store.current()
        logger.error(
            "Collection cycle failed",
            reason=error.reason,
            stage=error.details.get("stage"),
            instance_count=instance_count,
            failed_instances=[e.instance_number for e in errors],
            retained_generation=current.generation if current else None,
            duration_ms=round(duration * 1000, 2)
        )
        return CollectionResult(
            cycle_id=cycle_id,
            started_at=started_at,
            duration_seconds=duration,
            instance_count=instance_count,
            errors=errors,
            cycle_error=error
        )

    def _count(self, name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(name, **labels)

    def _set_gauge(self, name: str, value: float):
        if self.metrics:
            self.metrics.set_gauge(name, value)

    def _observe_duration(self, duration: float):
        if self.metrics:
            self.metrics.get_metric("federation_cycle_duration_seconds").observe(duration)

    def get_aggregation_stats(self) -> Dict[str, Any]:
        """Scheduler state and the last cycle's outcome."""
        current = self.store.current()
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "last_cycle": self.last_result.summary() if self.last_result else None,
            "snapshot_generation": current.generation if current else None,
            "snapshot_age_seconds": round(current.age_seconds(), 3) if current else None,
        }
