"""Metric family data model and the samples extracted from it."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

METRIC_NAME_LABEL = "__name__"
QUANTILE_LABEL = "quantile"
BUCKET_LABEL = "le"

# Range accepted for well-formed timestamps: 0001-01-01T00:00:00Z up to
# 9999-12-31T23:59:59.999999999Z.
_MIN_SECONDS = -62135596800
_MAX_SECONDS = 253402300799
_NANOS_PER_SECOND = 1_000_000_000


class MetricType(enum.IntEnum):
    """Kind of a metric family."""

    COUNTER = 0
    GAUGE = 1
    SUMMARY = 2
    UNTYPED = 3
    HISTOGRAM = 4
    GAUGE_HISTOGRAM = 5


@dataclass
class LabelPair:
    """A single label name and value."""

    name: str = ""
    value: str = ""


@dataclass
class Timestamp:
    """A point in time as seconds and nanoseconds since the Unix epoch."""

    seconds: int = 0
    nanos: int = 0

    def check_valid(self) -> None:
        """Raise ValueError if the timestamp is outside the supported range."""
        if self.seconds < _MIN_SECONDS:
            raise ValueError(f"timestamp ({self.seconds}, {self.nanos}) before 0001-01-01")
        if self.seconds > _MAX_SECONDS:
            raise ValueError(f"timestamp ({self.seconds}, {self.nanos}) after 9999-12-31")
        if not 0 <= self.nanos < _NANOS_PER_SECOND:
            raise ValueError(
                f"timestamp ({self.seconds}, {self.nanos}) has out-of-range nanos"
            )

    def unix_nanos(self) -> int:
        """Nanoseconds since the Unix epoch."""
        return self.seconds * _NANOS_PER_SECOND + self.nanos


@dataclass
class Exemplar:
    """An exemplar attached to a counter or a histogram bucket."""

    labels: list[LabelPair] = field(default_factory=list)
    value: float = 0.0
    timestamp: Timestamp | None = None


@dataclass
class Counter:
    value: float = 0.0
    exemplar: Exemplar | None = None
    created_timestamp: Timestamp | None = None


@dataclass
class Gauge:
    value: float = 0.0


@dataclass
class Untyped:
    value: float = 0.0


@dataclass
class Quantile:
    quantile: float = 0.0
    value: float = 0.0


@dataclass
class Summary:
    sample_count: int = 0
    sample_sum: float = 0.0
    quantiles: list[Quantile] = field(default_factory=list)
    created_timestamp: Timestamp | None = None


@dataclass
class Bucket:
    upper_bound: float = 0.0
    cumulative_count: int = 0
    exemplar: Exemplar | None = None


@dataclass
class Histogram:
    sample_count: int = 0
    sample_sum: float = 0.0
    buckets: list[Bucket] = field(default_factory=list)
    created_timestamp: Timestamp | None = None


@dataclass
class Metric:
    """One series of a family: its labels and exactly one value kind."""

    labels: list[LabelPair] = field(default_factory=list)
    gauge: Gauge | None = None
    counter: Counter | None = None
    summary: Summary | None = None
    untyped: Untyped | None = None
    histogram: Histogram | None = None
    timestamp_ms: int | None = None


@dataclass
class MetricFamily:
    """A named group of metrics sharing help text, type and unit."""

    name: str = ""
    help: str | None = None
    type: int = MetricType.COUNTER
    metrics: list[Metric] = field(default_factory=list)
    unit: str | None = None


@dataclass
class Sample:
    """A single decoded sample: label set, value and timestamp in milliseconds."""

    metric: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0