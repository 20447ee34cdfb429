"""
Invoice Analytics Service
Client Performance Metrics Module
"""
from .aggregator import (
    ClientContext,
    IngestResult,
    MetricAggregate,
    MetricSample,
    MetricsRollup,
    aggregate_samples,
    connection_speed,
    ingest_metrics,
    parse_samples,
)
from .anomaly import AnomalyReport, AnomalyResult, AnomalyType, PerformanceAnomalyDetector, calculate_trend

__all__ = [
    "ClientContext",
    "IngestResult",
    "MetricAggregate",
    "MetricSample",
    "MetricsRollup",
    "aggregate_samples",
    "connection_speed",
    "ingest_metrics",
    "parse_samples",
    "AnomalyReport",
    "AnomalyResult",
    "AnomalyType",
    "PerformanceAnomalyDetector",
    "calculate_trend",
]
