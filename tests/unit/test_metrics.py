"""
Unit Tests - Performance Metrics
"""
import asyncio
from datetime import datetime

import pytest

from invoice_analytics.analytics.errors import ValidationError
from invoice_analytics.metrics.aggregator import (
    ClientContext,
    MetricAggregate,
    MetricsRollup,
    aggregate_samples,
    connection_speed,
    ingest_metrics,
    parse_samples,
)
from invoice_analytics.metrics.anomaly import (
    AnomalySeverity,
    AnomalyType,
    PerformanceAnomalyDetector,
    calculate_trend,
)

NOW = datetime(2026, 6, 15, 12, 0, 0)


def samples(name, values):
    return [{"name": name, "value": v} for v in values]


class TestParsing:
    """Tests for sample validation"""

    @pytest.mark.parametrize("payload", [None, "metrics", {"name": "x", "value": 1}, 42, []])
    def test_batch_must_be_non_empty_list(self, payload):
        with pytest.raises(ValidationError):
            parse_samples(payload)

    @pytest.mark.parametrize("raw", [
        {"value": 1},
        {"name": "", "value": 1},
        {"name": "fcp", "value": "fast"},
        {"name": "fcp", "value": True},
        {"name": "fcp", "value": float("nan")},
        {"name": "memory_used", "value": 10 ** 400},
        {"name": "fcp"},
        "fcp=1",
    ])
    def test_malformed_sample_rejects_batch(self, raw):
        with pytest.raises(ValidationError):
            parse_samples([{"name": "ok", "value": 1}, raw])

    def test_timestamps(self):
        parsed = parse_samples(
            [
                {"name": "a", "value": 1, "timestamp": 1781524800000},
                {"name": "b", "value": 2, "timestamp": "2026-06-15T10:00:00Z"},
                {"name": "c", "value": 3, "timestamp": "yesterday"},
                {"name": "d", "value": 4},
            ],
            now=NOW,
        )

        assert parsed[0].timestamp == datetime(2026, 6, 15, 12, 0, 0)
        assert parsed[1].timestamp == datetime(2026, 6, 15, 10, 0, 0)
        assert parsed[2].timestamp == NOW
        assert parsed[3].timestamp == NOW

    def test_out_of_range_timestamp_falls_back(self):
        parsed = parse_samples(
            [
                {"name": "a", "value": 1, "timestamp": 10 ** 400},
                {"name": "b", "value": 2, "timestamp": 10 ** 18},
            ],
            now=NOW,
        )

        assert [sample.timestamp for sample in parsed] == [NOW, NOW]

    def test_extra_fields_kept_as_attributes(self):
        [sample] = parse_samples([{"name": "lcp", "value": 1200, "rating": "good", "url": "/invoices"}])

        assert sample.attributes == {"rating": "good", "url": "/invoices"}


class TestClientContext:
    """Tests for request-derived sample tags"""

    @pytest.mark.parametrize("downlink,expected", [
        ("12", "4g"),
        ("10", "4g"),
        ("1.5", "3g"),
        ("0.4", "2g"),
        ("0.1", "slow-2g"),
        (None, "unknown"),
        ("", "unknown"),
        ("fast", "unknown"),
    ])
    def test_connection_speed(self, downlink, expected):
        assert connection_speed(downlink) == expected

    def test_from_headers(self):
        context = ClientContext.from_headers({
            "User-Agent": "Mozilla/5.0",
            "Referer": "https://app.example/invoices",
            "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
            "X-Session-ID": "sess-1",
            "Downlink": "2.5",
        })

        assert context.client_ip == "203.0.113.7"
        assert context.session_id == "sess-1"
        assert context.connection_speed == "3g"
        assert context.to_dict()["user_agent"] == "Mozilla/5.0"

    def test_real_ip_fallback_and_defaults(self):
        assert ClientContext.from_headers({"X-Real-IP": "198.51.100.2"}).client_ip == "198.51.100.2"

        context = ClientContext.from_headers({})
        assert context.client_ip == "unknown"
        assert context.user_agent == ""
        assert context.connection_speed == "unknown"


class TestAggregation:
    """Tests for per-name rollups"""

    def test_rollup_fields(self):
        aggregates = aggregate_samples(parse_samples(samples("fcp", [300, 100, 200])))

        fcp = aggregates["fcp"]
        assert (fcp.count, fcp.sum, fcp.average, fcp.min, fcp.max) == (3, 600.0, 200.0, 100.0, 300.0)
        assert list(fcp.recent) == [300.0, 100.0, 200.0]

    def test_recent_window_keeps_last_ten_in_order(self):
        aggregates = aggregate_samples(parse_samples(samples("ttfb", range(1, 12))))

        ttfb = aggregates["ttfb"]
        assert ttfb.count == 11
        assert list(ttfb.recent) == [float(v) for v in range(2, 12)]
        assert ttfb.min == 1.0

    def test_names_aggregated_separately(self):
        aggregates = aggregate_samples(parse_samples(samples("a", [1, 2]) + samples("b", [5])))

        assert set(aggregates) == {"a", "b"}
        assert aggregates["a"].count == 2

    def test_to_dict(self):
        aggregate = MetricAggregate(name="x", window_size=2)
        for value in (1.0, 2.0, 3.0):
            aggregate.fold(value)

        assert aggregate.to_dict() == {
            "count": 3, "sum": 6.0, "average": 2.0, "min": 1.0, "max": 3.0, "recent": [2.0, 3.0],
        }


class TestAnomalyDetection:
    """Tests for performance signals"""

    @pytest.fixture
    def detector(self):
        return PerformanceAnomalyDetector()

    def test_trend_slope(self):
        assert calculate_trend([10, 12, 14, 16, 18]) == 2.0
        assert calculate_trend([5]) == 0.0
        assert calculate_trend([]) == 0.0

    def test_threshold_severity(self, detector):
        medium = aggregate_samples(parse_samples(samples("api_request_duration", [2500])))
        high = aggregate_samples(parse_samples(samples("api_request_duration", [4500])))

        [signal] = detector.detect(medium).anomalies
        assert signal.anomaly_type == AnomalyType.THRESHOLD
        assert signal.severity == AnomalySeverity.MEDIUM
        assert detector.detect(high).anomalies[0].severity == AnomalySeverity.HIGH

    def test_under_threshold_and_unknown_names_pass(self, detector):
        aggregates = aggregate_samples(parse_samples(samples("api_request_duration", [1999]) + samples("custom", [1e9])))

        assert detector.detect(aggregates).anomalies == []

    def test_gentle_memory_growth_not_flagged(self, detector):
        aggregates = aggregate_samples(parse_samples(samples("memory_used", [10, 12, 14, 16, 18])))

        assert detector.detect(aggregates).anomalies_found == 0

    def test_memory_leak_trend(self, detector):
        aggregates = aggregate_samples(parse_samples(samples("memory_used", [10, 20, 30, 40, 50])))

        report = detector.detect(aggregates)

        [signal] = report.anomalies
        assert signal.anomaly_type == AnomalyType.MEMORY_TREND
        assert signal.value == pytest.approx(10.0)
        assert report.has_critical_anomalies

    def test_memory_trend_needs_minimum_samples(self, detector):
        aggregates = aggregate_samples(parse_samples(samples("memory_used", [10, 50, 90, 130])))

        assert detector.detect(aggregates).anomalies == []

    def test_api_degradation(self, detector):
        values = [100] * 20 + [1000] * 10
        aggregates = aggregate_samples(parse_samples(samples("api_request_duration", values)))

        [signal] = detector.detect(aggregates).anomalies

        assert signal.anomaly_type == AnomalyType.DEGRADATION
        assert signal.value == pytest.approx(1000.0)
        assert signal.expected_value == pytest.approx(400.0)
        assert signal.to_dict()["type"] == "degradation"


class TestIngestion:
    """Tests for batch ingestion"""

    async def test_counts_and_signals(self):
        payload = samples("api_request_duration", [2500, 2600]) + samples("fcp", [900])

        result = await ingest_metrics(payload, detector=PerformanceAnomalyDetector(), now=NOW)

        assert result.processed_count == 3
        assert result.aggregated_metric_count == 2
        assert [s.metric_name for s in result.signals] == ["api_request_duration"]

    async def test_invalid_batch_raises(self):
        with pytest.raises(ValidationError):
            await ingest_metrics(None)

    async def test_batches_independent_without_rollup(self):
        await ingest_metrics(samples("fcp", [100]))
        result = await ingest_metrics(samples("fcp", [300]))

        assert result.aggregates["fcp"].count == 1

    async def test_rollup_accumulates_across_batches(self):
        rollup = MetricsRollup(window_size=3)

        await ingest_metrics(samples("fcp", [1, 2]), rollup=rollup)
        result = await ingest_metrics(samples("fcp", [3, 4]) + samples("lcp", [10]), rollup=rollup)

        fcp = result.aggregates["fcp"]
        assert fcp.count == 4
        assert list(fcp.recent) == [2.0, 3.0, 4.0]
        assert result.aggregated_metric_count == 2

    async def test_rollup_returns_copies(self):
        rollup = MetricsRollup()
        touched = await rollup.fold(parse_samples(samples("fcp", [1])))
        touched["fcp"].fold(99.0)

        snapshot = await rollup.snapshot()

        assert snapshot["fcp"].count == 1

    async def test_concurrent_folds_all_counted(self):
        rollup = MetricsRollup()

        await asyncio.gather(*[ingest_metrics(samples("fcp", [i]), rollup=rollup) for i in range(50)])

        assert (await rollup.snapshot())["fcp"].count == 50
        await rollup.reset()
        assert await rollup.snapshot() == {}
