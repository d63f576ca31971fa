"""
Metric families as exchanged between instances and the federation endpoint.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

LabelPairs = Tuple[Tuple[str, str], ...]


class MetricType(str, Enum):
    """Metric types of the Prometheus text format."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"
    UNTYPED = "untyped"

    @classmethod
    def from_exposition(cls, value: str) -> "MetricType":
        """Map a parsed family type onto the text-format type set."""
        try:
            return cls(value)
        except ValueError:
            return _EXPOSITION_ALIASES.get(value, cls.UNTYPED)


_EXPOSITION_ALIASES = {
    "unknown": MetricType.UNTYPED,
    "info": MetricType.GAUGE,
    "stateset": MetricType.GAUGE,
    "gaugehistogram": MetricType.HISTOGRAM,
}


@dataclass(frozen=True)
class MetricSeries:
    """One labeled sample of a family.

    ``labels`` keeps the order in which pairs were emitted and may contain
    the same name twice once identity labels have been appended.
    """
    name: str
    labels: LabelPairs
    value: float
    timestamp: Optional[float] = None

    def label_values(self, name: str) -> Tuple[str, ...]:
        """All values carried under ``name``, in emission order."""
        return tuple(value for key, value in self.labels if key == name)


@dataclass(frozen=True)
class MetricFamily:
    """A named group of series sharing type and help text."""
    name: str
    type: MetricType
    documentation: str = ""
    series: Tuple[MetricSeries, ...] = field(default_factory=tuple)


# Family name -> family, in first-seen order.
FamilyCollection = Dict[str, MetricFamily]


@dataclass(frozen=True)
class IdentityContext:
    """Origin of one instance's metrics, fixed before the fetch starts."""
    org_name: str
    space_name: str
    app_name: str
    app_guid: str
    instance_number: int

    @property
    def instance_id(self) -> str:
        return f"{self.app_guid}:{self.instance_number}"
