"""
Unit tests for the exposition codec.
"""

import pytest

from shared.errors import ParseFailed
from service_federation.app.exposition.codec import decode, encode
from service_federation.app.exposition.models import MetricFamily, MetricSeries, MetricType

from conftest import QUEUE_TEXT, REQUESTS_TEXT

HISTOGRAM_TEXT = """\
# HELP latency_seconds Request latency.
# TYPE latency_seconds histogram
latency_seconds_bucket{le="0.1"} 1
latency_seconds_bucket{le="+Inf"} 2
latency_seconds_sum 0.3
latency_seconds_count 2
"""


class TestDecode:
    """Test cases for decode."""

    def test_decode_gauge(self):
        """Test decoding a gauge family."""
        families = decode(QUEUE_TEXT.encode())

        family = families["queue_depth"]
        assert family.type == MetricType.GAUGE
        assert family.documentation == "Jobs waiting in the queue."
        assert len(family.series) == 1
        assert family.series[0].name == "queue_depth"
        assert family.series[0].labels == ()
        assert family.series[0].value == 7.0

    def test_decode_counter_keeps_sample_names(self):
        """Test counter samples keep their _total suffix."""
        families = decode(REQUESTS_TEXT)

        counters = [f for f in families.values() if f.type == MetricType.COUNTER]
        assert len(counters) == 1
        series = counters[0].series
        assert [s.name for s in series] == ["requests_total", "requests_total"]
        assert series[0].labels == (("path", "/"),)
        assert series[1].value == 5.0
        assert counters[0].name == "requests_total"
        assert "requests_total" in families

    def test_decode_histogram(self):
        """Test every histogram sample becomes a series."""
        families = decode(HISTOGRAM_TEXT)

        family = families["latency_seconds"]
        assert family.type == MetricType.HISTOGRAM
        assert [s.name for s in family.series] == [
            "latency_seconds_bucket",
            "latency_seconds_bucket",
            "latency_seconds_sum",
            "latency_seconds_count",
        ]
        assert family.series[1].label_values("le") == ("+Inf",)

    def test_decode_untyped(self):
        """Test metrics without a TYPE line are untyped."""
        families = decode("free_memory_bytes 1024\n")

        assert families["free_memory_bytes"].type == MetricType.UNTYPED

    def test_decode_gauge_and_counter_sharing_a_base_name(self):
        """Test a gauge foo and a counter foo_total are distinct families."""
        families = decode("# TYPE foo gauge\nfoo 1\n# TYPE foo_total counter\nfoo_total 2\n")

        assert list(families) == ["foo", "foo_total"]
        assert families["foo"].type == MetricType.GAUGE
        assert families["foo_total"].type == MetricType.COUNTER
        assert families["foo_total"].series[0].value == 2.0

    def test_decode_repeated_family_rejected(self):
        """Test a family split across two blocks is rejected."""
        with pytest.raises(ParseFailed):
            decode("# TYPE foo gauge\nfoo 1\n# TYPE bar gauge\nbar 2\n# TYPE foo gauge\nfoo 3\n")

    def test_decode_empty_payload(self):
        """Test an empty document decodes to no families."""
        assert decode(b"") == {}

    def test_decode_invalid_text(self):
        """Test non-exposition bodies are rejected."""
        with pytest.raises(ParseFailed) as exc_info:
            decode(b"<html><body>404 Not Found</body></html>")

        assert exc_info.value.code == "PARSE_FAILED"
        assert exc_info.value.instance_number is None

    def test_decode_invalid_utf8(self):
        """Test undecodable bytes are rejected."""
        with pytest.raises(ParseFailed):
            decode(b"\xff\xfe\xfa")

    def test_parse_failure_attaches_instance(self):
        """Test codec errors can be tagged with their instance."""
        error = ParseFailed("bad line").for_instance(4)

        assert error.instance_number == 4
        assert error.message == "instance 4: bad line"
        assert error.details["instance_number"] == 4


class TestEncode:
    """Test cases for encode."""

    def test_encode_counter_restores_total_suffix(self):
        """Test counter families are exposed under their _total name."""
        family = MetricFamily(
            name="requests",
            type=MetricType.COUNTER,
            documentation="Total HTTP requests.",
            series=(MetricSeries("requests_total", (("path", "/"),), 3.0),),
        )

        text = encode({"requests": family})

        assert text.splitlines() == [
            "# HELP requests_total Total HTTP requests.",
            "# TYPE requests_total counter",
            'requests_total{path="/"} 3.0',
        ]

    def test_encode_keeps_repeated_label_names(self):
        """Test repeated label names are written as given."""
        family = MetricFamily(
            name="jobs",
            type=MetricType.GAUGE,
            series=(MetricSeries("jobs", (("app_name", "inner"), ("app_name", "outer")), 1.0),),
        )

        text = encode([family])

        assert 'jobs{app_name="inner",app_name="outer"} 1.0' in text.splitlines()

    def test_encode_escapes_label_values_and_help(self):
        """Test label values and help text are escaped."""
        family = MetricFamily(
            name="errors",
            type=MetricType.GAUGE,
            documentation="Line one\nline two \\ end",
            series=(MetricSeries("errors", (("message", 'say "hi"\n'),), 2.0),),
        )

        lines = encode([family]).splitlines()

        assert lines[0] == "# HELP errors Line one\\nline two \\\\ end"
        assert lines[2] == 'errors{message="say \\"hi\\"\\n"} 2.0'

    def test_encode_special_values_and_timestamps(self):
        """Test infinite values and millisecond timestamps."""
        family = MetricFamily(
            name="ratio",
            type=MetricType.UNTYPED,
            series=(
                MetricSeries("ratio", (), float("inf")),
                MetricSeries("ratio", (("shard", "b"),), 0.5, timestamp=1.5),
            ),
        )

        lines = encode([family]).splitlines()

        assert lines[0] == "# TYPE ratio untyped"
        assert lines[1] == "ratio +Inf"
        assert lines[2] == 'ratio{shard="b"} 0.5 1500'

    def test_encode_omits_empty_help(self):
        """Test no HELP line is written for a family without help text."""
        family = MetricFamily(
            name="jobs",
            type=MetricType.GAUGE,
            series=(MetricSeries("jobs", (), 1.0),),
        )

        assert encode([family]).splitlines() == ["# TYPE jobs gauge", "jobs 1.0"]

    def test_encode_empty(self):
        """Test an empty collection encodes to an empty document."""
        assert encode({}) == ""

    def test_decoded_families_encode_to_valid_text(self):
        """Test a decoded document can be decoded again after encoding."""
        families = decode(REQUESTS_TEXT + QUEUE_TEXT + HISTOGRAM_TEXT)

        text = encode(families)

        assert "# TYPE requests_total counter" in text
        assert "# TYPE latency_seconds histogram" in text
        assert decode(text) == families
