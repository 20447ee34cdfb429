"""
Client Performance Metrics Ingestion

Validates sample batches posted by browsers, stamps them with the client
context and folds them into per-name rollups (count, sum, average, min,
max and a bounded window of the most recent values).

By default every batch is folded on its own. A MetricsRollup keeps the
rollups alive across batches for the life of the process.
"""

import asyncio
import copy
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

import structlog

from invoice_analytics.analytics.errors import ValidationError
from invoice_analytics.analytics.window import utcnow
from invoice_analytics.instrumentation import SAMPLES_INGESTED
from .anomaly import AnomalyResult, PerformanceAnomalyDetector

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_SIZE = 10


def connection_speed(downlink: Optional[str]) -> str:
    """Effective connection class from the Downlink client hint in Mbps"""
    if not downlink:
        return "unknown"
    try:
        speed = float(downlink)
    except ValueError:
        return "unknown"
    if speed >= 10:
        return "4g"
    if speed >= 1.5:
        return "3g"
    if speed >= 0.4:
        return "2g"
    return "slow-2g"


@dataclass
class ClientContext:
    """Request-level tags attached to every sample"""
    user_agent: str = ""
    referer: str = ""
    client_ip: str = "unknown"
    session_id: Optional[str] = None
    connection_speed: str = "unknown"

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ClientContext":
        headers = {key.lower(): value for key, value in headers.items()}
        forwarded = headers.get("x-forwarded-for") or headers.get("x-real-ip") or "unknown"
        return cls(
            user_agent=headers.get("user-agent", ""),
            referer=headers.get("referer", ""),
            client_ip=forwarded.split(",")[0].strip() or "unknown",
            session_id=headers.get("x-session-id"),
            connection_speed=connection_speed(headers.get("downlink")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_agent": self.user_agent,
            "referer": self.referer,
            "client_ip": self.client_ip,
            "session_id": self.session_id,
            "connection_speed": self.connection_speed,
        }


@dataclass
class MetricSample:
    """Validated sample with its client context"""
    name: str
    value: float
    timestamp: datetime
    context: ClientContext
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricAggregate:
    """Running rollup for one metric name"""
    name: str
    window_size: int = DEFAULT_WINDOW_SIZE
    count: int = 0
    sum: float = 0.0
    average: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    recent: Deque[float] = field(default_factory=deque)

    def __post_init__(self):
        self.recent = deque(self.recent, maxlen=self.window_size)

    def fold(self, value: float) -> None:
        self.count += 1
        self.sum += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        # Oldest value drops out once the window is full
        self.recent.append(value)
        self.average = self.sum / self.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "sum": self.sum,
            "average": self.average,
            "min": self.min,
            "max": self.max,
            "recent": list(self.recent),
        }


@dataclass
class IngestResult:
    """Outcome of one ingestion batch"""
    processed_count: int
    aggregated_metric_count: int
    aggregates: Dict[str, MetricAggregate] = field(default_factory=dict)
    signals: List[AnomalyResult] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False


def _parse_timestamp(value: Any, default: datetime) -> datetime:
    """Epoch milliseconds or ISO-8601; anything else falls back to ingestion time"""
    if _is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return default
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return default


def parse_sample(raw: Any, context: ClientContext, now: datetime) -> MetricSample:
    """Validate one raw sample"""
    if not isinstance(raw, Mapping):
        raise ValidationError("Invalid performance data: each metric must be an object")

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError("Invalid performance data: metric name must be a non-empty string")

    value = raw.get("value")
    if not _is_number(value):
        raise ValidationError(f"Invalid performance data: value of {name} must be a finite number")

    attributes = {k: v for k, v in raw.items() if k not in ("name", "value", "timestamp")}
    return MetricSample(
        name=name,
        value=float(value),
        timestamp=_parse_timestamp(raw.get("timestamp"), now),
        context=context,
        attributes=attributes,
    )


def parse_samples(
    payload: Any,
    context: Optional[ClientContext] = None,
    now: Optional[datetime] = None,
) -> List[MetricSample]:
    """
    Validate a batch of raw samples.

    Raises:
        ValidationError: missing, empty or non-list batch, or a malformed sample
    """
    if payload is None or isinstance(payload, (str, bytes, Mapping)) or not isinstance(payload, Sequence):
        raise ValidationError("Invalid performance data: metrics must be a list")
    if not payload:
        raise ValidationError("Invalid performance data: metrics must not be empty")

    context = context or ClientContext()
    now = now or utcnow()
    return [parse_sample(raw, context, now) for raw in payload]


def aggregate_samples(
    samples: Sequence[MetricSample],
    window_size: int = DEFAULT_WINDOW_SIZE,
    into: Optional[Dict[str, MetricAggregate]] = None,
) -> Dict[str, MetricAggregate]:
    """Fold samples in arrival order, creating a rollup on the first sample of a name"""
    aggregates = {} if into is None else into
    for sample in samples:
        aggregate = aggregates.get(sample.name)
        if aggregate is None:
            aggregate = aggregates[sample.name] = MetricAggregate(name=sample.name, window_size=window_size)
        aggregate.fold(sample.value)
    return aggregates


class MetricsRollup:
    """
    Process-wide rollups shared across batches.

    Folds are serialized by a single lock so concurrent requests never
    interleave updates to the same aggregate.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        self.window_size = window_size
        self._aggregates: Dict[str, MetricAggregate] = {}
        self._lock = asyncio.Lock()

    async def fold(self, samples: Sequence[MetricSample]) -> Dict[str, MetricAggregate]:
        """Fold a batch and return copies of the rollups it touched"""
        async with self._lock:
            aggregate_samples(samples, self.window_size, into=self._aggregates)
            touched = {sample.name for sample in samples}
            return {name: copy.deepcopy(self._aggregates[name]) for name in touched}

    async def snapshot(self) -> Dict[str, MetricAggregate]:
        async with self._lock:
            return copy.deepcopy(self._aggregates)

    async def reset(self) -> None:
        async with self._lock:
            self._aggregates.clear()


async def ingest_metrics(
    payload: Any,
    context: Optional[ClientContext] = None,
    detector: Optional[PerformanceAnomalyDetector] = None,
    rollup: Optional[MetricsRollup] = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
    now: Optional[datetime] = None,
) -> IngestResult:
    """
    Validate, aggregate and check one batch of samples.

    Args:
        payload: Raw sample list as posted by the client
        context: Client tags from the request headers
        detector: Anomaly detector run over the resulting rollups
        rollup: Cross-batch rollup; when absent the batch is folded alone
        window_size: Recent window size for per-batch rollups
        now: Ingestion time for samples without a timestamp

    Returns:
        IngestResult with counts, rollups and raised signals
    """
    samples = parse_samples(payload, context, now)
    SAMPLES_INGESTED.inc(len(samples))

    if rollup is not None:
        aggregates = await rollup.fold(samples)
    else:
        aggregates = aggregate_samples(samples, window_size)

    signals: List[AnomalyResult] = []
    if detector is not None:
        signals = detector.detect(aggregates).anomalies

    logger.info(
        "Performance metrics ingested",
        processed=len(samples),
        aggregated=len(aggregates),
        signals=len(signals),
        client_ip=samples[0].context.client_ip,
    )

    return IngestResult(
        processed_count=len(samples),
        aggregated_metric_count=len(aggregates),
        aggregates=aggregates,
        signals=signals,
    )
