"""
Performance Anomaly Detection

Rule checks over per-metric rollups:
- Threshold breach on the running average
- Memory growth trend (least-squares slope over the recent window)
- API latency degradation (recent mean against the lifetime average)

Signals are logged and returned; they never fail ingestion.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import structlog

from invoice_analytics.analytics.window import utcnow
from invoice_analytics.instrumentation import PERFORMANCE_SIGNALS

logger = structlog.get_logger(__name__)

MEMORY_METRIC = "memory_used"
API_LATENCY_METRIC = "api_request_duration"

DEFAULT_THRESHOLDS = {
    "api_request_duration": 2000.0,
    "resource_load_time": 3000.0,
    "memory_used": 100.0,
    "long_task_duration": 50.0,
}


class AnomalyType(str, Enum):
    """Types of performance signals"""
    THRESHOLD = "threshold"  # Average above the metric threshold
    MEMORY_TREND = "memory_trend"  # Memory climbing sample over sample
    DEGRADATION = "degradation"  # Recent latency well above the lifetime average


class AnomalySeverity(str, Enum):
    """Severity levels for signals"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AnomalyResult:
    """Single performance signal"""
    metric_name: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    detected_at: datetime
    value: float
    expected_value: float
    threshold: float
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity in [AnomalySeverity.CRITICAL, AnomalySeverity.HIGH]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "detected_at": self.detected_at.isoformat(),
            "value": self.value,
            "expected_value": self.expected_value,
            "threshold": self.threshold,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class AnomalyReport:
    """Signals raised for one batch"""
    started_at: datetime
    completed_at: datetime
    metrics_checked: int
    anomalies: List[AnomalyResult] = field(default_factory=list)

    @property
    def anomalies_found(self) -> int:
        return len(self.anomalies)

    @property
    def has_critical_anomalies(self) -> bool:
        return any(a.is_critical for a in self.anomalies)


def calculate_trend(values: Iterable[float]) -> float:
    """
    Ordinary least-squares slope of values against their index.

    slope = (n·Σxy − Σx·Σy) / (n·Σx² − (Σx)²), 0 for fewer than two values.
    """
    y = np.asarray(list(values), dtype=float)
    n = len(y)
    if n < 2:
        return 0.0

    x = np.arange(n, dtype=float)
    denominator = n * np.sum(x * x) - np.sum(x) ** 2
    if denominator == 0:
        return 0.0
    return float((n * np.sum(x * y) - np.sum(x) * np.sum(y)) / denominator)


class PerformanceAnomalyDetector:
    """
    Detector for client performance rollups.

    Example:
        detector = PerformanceAnomalyDetector.from_settings(settings.metrics)
        report = detector.detect(aggregates)
    """

    def __init__(
        self,
        thresholds: Optional[Mapping[str, float]] = None,
        trend_min_samples: int = 5,
        memory_slope_threshold: float = 5.0,
        degradation_factor: float = 1.5,
    ):
        self.thresholds = dict(DEFAULT_THRESHOLDS if thresholds is None else thresholds)
        self.trend_min_samples = trend_min_samples
        self.memory_slope_threshold = memory_slope_threshold
        self.degradation_factor = degradation_factor

    @classmethod
    def from_settings(cls, settings) -> "PerformanceAnomalyDetector":
        return cls(
            thresholds=settings.thresholds,
            trend_min_samples=settings.trend_min_samples,
            memory_slope_threshold=settings.memory_slope_threshold,
            degradation_factor=settings.degradation_factor,
        )

    def _check_threshold(self, name: str, aggregate) -> List[AnomalyResult]:
        threshold = self.thresholds.get(name)
        if threshold is None or aggregate.average <= threshold:
            return []

        severity = AnomalySeverity.HIGH if aggregate.average > threshold * 2 else AnomalySeverity.MEDIUM
        return [AnomalyResult(
            metric_name=name,
            anomaly_type=AnomalyType.THRESHOLD,
            severity=severity,
            detected_at=utcnow(),
            value=aggregate.average,
            expected_value=threshold,
            threshold=threshold,
            message=f"{name} average is {aggregate.average:.2f}, threshold is {threshold:g}",
            details={"count": aggregate.count},
        )]

    def _check_memory_trend(self, aggregate) -> List[AnomalyResult]:
        if len(aggregate.recent) < self.trend_min_samples:
            return []

        slope = calculate_trend(aggregate.recent)
        if slope <= self.memory_slope_threshold:
            return []

        return [AnomalyResult(
            metric_name=aggregate.name,
            anomaly_type=AnomalyType.MEMORY_TREND,
            severity=AnomalySeverity.HIGH,
            detected_at=utcnow(),
            value=slope,
            expected_value=0.0,
            threshold=self.memory_slope_threshold,
            message="Potential memory leak detected, memory usage trending upward",
            details={"slope": slope, "samples": len(aggregate.recent)},
        )]

    def _check_degradation(self, aggregate) -> List[AnomalyResult]:
        if len(aggregate.recent) < self.trend_min_samples:
            return []

        recent_average = float(np.mean(list(aggregate.recent)))
        limit = aggregate.average * self.degradation_factor
        if recent_average <= limit:
            return []

        return [AnomalyResult(
            metric_name=aggregate.name,
            anomaly_type=AnomalyType.DEGRADATION,
            severity=AnomalySeverity.MEDIUM,
            detected_at=utcnow(),
            value=recent_average,
            expected_value=aggregate.average,
            threshold=self.degradation_factor,
            message="API performance degradation detected",
            details={"recent_average": recent_average, "lifetime_average": aggregate.average},
        )]

    def detect(self, aggregates: Mapping[str, Any]) -> AnomalyReport:
        """
        Run every check over the given rollups.

        Args:
            aggregates: MetricAggregate per metric name

        Returns:
            AnomalyReport with the raised signals
        """
        started_at = utcnow()
        anomalies: List[AnomalyResult] = []

        for name, aggregate in aggregates.items():
            anomalies.extend(self._check_threshold(name, aggregate))
            if name == MEMORY_METRIC:
                anomalies.extend(self._check_memory_trend(aggregate))
            elif name == API_LATENCY_METRIC:
                anomalies.extend(self._check_degradation(aggregate))

        for anomaly in anomalies:
            PERFORMANCE_SIGNALS.labels(metric=anomaly.metric_name, type=anomaly.anomaly_type.value).inc()
            logger.warning(
                "Performance issue detected",
                metric=anomaly.metric_name,
                anomaly_type=anomaly.anomaly_type.value,
                severity=anomaly.severity.value,
                value=round(anomaly.value, 2),
                threshold=anomaly.threshold,
                detail=anomaly.message,
            )

        report = AnomalyReport(
            started_at=started_at,
            completed_at=utcnow(),
            metrics_checked=len(aggregates),
            anomalies=anomalies,
        )
        if report.has_critical_anomalies:
            logger.error(
                "Critical performance issues in batch",
                critical=sum(1 for a in anomalies if a.is_critical),
                metrics_checked=report.metrics_checked,
            )
        return report
