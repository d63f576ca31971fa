"""
Prometheus text codec for federated metric families.

Decoding relies on ``prometheus_client``'s text parser. Encoding is done
here because the federated document may carry repeated label names, which
``prometheus_client`` samples (label dicts) cannot represent.
"""

from typing import Iterable, List, Union

from prometheus_client.parser import text_string_to_metric_families
from prometheus_client.utils import floatToGoString

from shared.errors import ParseFailed
from .models import FamilyCollection, LabelPairs, MetricFamily, MetricSeries, MetricType


def decode(payload: Union[bytes, str]) -> FamilyCollection:
    """Parse exposition text into a family collection.

    Raises ``ParseFailed`` when the payload is not valid text format or
    declares the same family twice.
    """
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        parsed = list(text_string_to_metric_families(text))
    except (UnicodeDecodeError, ValueError, TypeError, IndexError, KeyError) as e:
        raise ParseFailed(f"invalid exposition text: {e}") from e

    families: FamilyCollection = {}
    for metric in parsed:
        name = _exposed_name(metric.name, metric.type)
        if name in families:
            raise ParseFailed(f"family {name} declared more than once")

        series = tuple(
            MetricSeries(
                name=sample.name,
                labels=tuple(sample.labels.items()),
                value=float(sample.value),
                timestamp=_timestamp_seconds(sample.timestamp),
            )
            for sample in metric.samples
        )
        families[name] = MetricFamily(
            name=name,
            type=MetricType.from_exposition(metric.type),
            documentation=metric.documentation or "",
            series=series,
        )

    return families


def encode(families: Union[FamilyCollection, Iterable[MetricFamily]]) -> str:
    """Serialize families to the Prometheus text format (version 0.0.4)."""
    if isinstance(families, dict):
        families = families.values()

    lines: List[str] = []
    for family in families:
        exposed_name = _exposed_name(family.name, family.type)
        if family.documentation:
            lines.append(f"# HELP {exposed_name} {_escape_help(family.documentation)}")
        lines.append(f"# TYPE {exposed_name} {family.type.value}")
        for series in family.series:
            lines.append(_format_series(series))

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def _exposed_name(name: str, metric_type: str) -> str:
    # prometheus_client names counter families without their ``_total`` suffix.
    if metric_type == MetricType.COUNTER and not name.endswith("_total"):
        return f"{name}_total"
    return name


def _format_series(series: MetricSeries) -> str:
    line = f"{series.name}{_format_labels(series.labels)} {floatToGoString(series.value)}"
    if series.timestamp is not None:
        line += f" {int(series.timestamp * 1000):d}"
    return line


def _format_labels(labels: LabelPairs) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{name}="{_escape_label_value(value)}"' for name, value in labels)
    return "{" + pairs + "}"


def _escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r'\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n")


def _timestamp_seconds(timestamp) -> Union[float, None]:
    if timestamp is None:
        return None
    # OpenMetrics parsers hand back Timestamp objects, the text parser floats.
    return float(timestamp)
