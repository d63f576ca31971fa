"""
Holder of the snapshot served to scrapers.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Tuple

from shared.logging import get_logger


@dataclass(frozen=True)
class Snapshot:
    """Serialized result of one completed collection cycle."""
    text: str
    instance_count: int
    instances: Tuple[int, ...]
    series_count: int
    created_at: datetime
    generation: int = 0

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.created_at).total_seconds()


class SnapshotStore:
    """Single-writer, many-reader store of the current snapshot.

    ``publish`` swaps a reference to an immutable ``Snapshot``; readers get
    either the previous or the new object and never wait on a collection
    cycle. The lock only covers the generation bump and the swap.
    """

    def __init__(self):
        self.logger = get_logger("federation.store")
        self._lock = threading.Lock()
        self._current: Optional[Snapshot] = None
        self._generation = 0

    def publish(self, snapshot: Snapshot) -> Snapshot:
        """Replace the current snapshot, stamping it with the next generation."""
        with self._lock:
            self._generation += 1
            stamped = replace(snapshot, generation=self._generation)
            self._current = stamped

        self.logger.info(
            "Snapshot published",
            generation=stamped.generation,
            instances=len(stamped.instances),
            instance_count=stamped.instance_count,
            series=stamped.series_count,
            size_bytes=len(stamped.text)
        )
        return stamped

    def current(self) -> Optional[Snapshot]:
        """The most recently published snapshot, or None before the first one."""
        return self._current

    @property
    def generation(self) -> int:
        return self._generation
