"""Rendering of metric families in the OpenMetrics text format."""

from __future__ import annotations

import math
from typing import IO, Any

from .model import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    Exemplar,
    Metric,
    MetricFamily,
    MetricType,
    Timestamp,
)
from .text_create import (
    _name_and_labels,
    _shortest_general,
    _type_label,
    _write,
    escape_string,
    format_name,
)

_EOF_LINE = "# EOF\n"


def format_openmetrics_float(value: float) -> str:
    """Render a float as OpenMetrics expects: always with a '.' or an exponent."""
    if value == 1:
        return "1.0"
    if value == 0:
        return "0.0"
    if value == -1:
        return "-1.0"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = _shortest_general(float(value))
    if "e" not in text and "." not in text:
        text += ".0"
    return text


def _labels(name: str, metric_labels, extra: tuple[str, float] | None) -> str:
    return _name_and_labels(name, metric_labels, extra, format_openmetrics_float)


def _exemplar_text(exemplar: Exemplar) -> str:
    text = " # " + _labels("", exemplar.labels, None)
    text += " " + format_openmetrics_float(exemplar.value)
    if exemplar.timestamp is not None:
        exemplar.timestamp.check_valid()
        seconds = float(exemplar.timestamp.unix_nanos()) / 1e9
        text += " " + format_openmetrics_float(seconds)
    return text


def _sample_line(
    name: str,
    suffix: str,
    metric: Metric,
    extra: tuple[str, float] | None,
    value_text: str,
    exemplar: Exemplar | None = None,
) -> str:
    line = _labels(name + suffix, metric.labels, extra) + " " + value_text
    if metric.timestamp_ms is not None:
        line += " " + format_openmetrics_float(float(metric.timestamp_ms) / 1000)
    if exemplar is not None and exemplar.labels:
        line += _exemplar_text(exemplar)
    return line + "\n"


def _created_line(
    name: str, suffix_to_trim: str, metric: Metric, created: Timestamp
) -> str:
    if suffix_to_trim and name.endswith(suffix_to_trim):
        name = name[: -len(suffix_to_trim)]
    seconds = float(created.unix_nanos()) / 1e9
    return (
        _labels(name + "_created", metric.labels, None)
        + " "
        + format_openmetrics_float(seconds)
        + "\n"
    )


def _metric_lines(
    name: str, metric_type: int, metric: Metric, with_created_lines: bool
) -> list[str]:
    om_float = format_openmetrics_float
    if metric_type == MetricType.COUNTER:
        counter = metric.counter
        if counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        lines = [_sample_line(name, "", metric, None, om_float(counter.value), counter.exemplar)]
        if with_created_lines and counter.created_timestamp is not None:
            lines.append(_created_line(name, "_total", metric, counter.created_timestamp))
        return lines
    if metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric}")
        return [_sample_line(name, "", metric, None, om_float(metric.gauge.value))]
    if metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric}")
        return [_sample_line(name, "", metric, None, om_float(metric.untyped.value))]
    if metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric}")
        lines = [
            _sample_line(name, "", metric, (QUANTILE_LABEL, q.quantile), om_float(q.value))
            for q in summary.quantiles
        ]
        lines.append(_sample_line(name, "_sum", metric, None, om_float(summary.sample_sum)))
        lines.append(_sample_line(name, "_count", metric, None, str(summary.sample_count)))
        if with_created_lines and summary.created_timestamp is not None:
            lines.append(_created_line(name, "", metric, summary.created_timestamp))
        return lines
    if metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric}")
        lines = [
            _sample_line(
                name,
                "_bucket",
                metric,
                (BUCKET_LABEL, b.upper_bound),
                str(b.cumulative_count),
                b.exemplar,
            )
            for b in histogram.buckets
        ]
        if not any(math.isinf(b.upper_bound) and b.upper_bound > 0 for b in histogram.buckets):
            lines.append(
                _sample_line(
                    name,
                    "_bucket",
                    metric,
                    (BUCKET_LABEL, math.inf),
                    str(histogram.sample_count),
                )
            )
        lines.append(_sample_line(name, "_sum", metric, None, om_float(histogram.sample_sum)))
        lines.append(_sample_line(name, "_count", metric, None, str(histogram.sample_count)))
        if with_created_lines and histogram.created_timestamp is not None:
            lines.append(_created_line(name, "", metric, histogram.created_timestamp))
        return lines
    raise ValueError(f"unexpected type in metric {name} {metric}")


def _type_line_name(metric_type: int, name: str) -> str:
    if metric_type == MetricType.COUNTER:
        return "counter" if name.endswith("_total") else "unknown"
    if metric_type == MetricType.GAUGE:
        return "gauge"
    if metric_type == MetricType.SUMMARY:
        return "summary"
    if metric_type == MetricType.UNTYPED:
        return "unknown"
    if metric_type == MetricType.HISTOGRAM:
        return "histogram"
    raise ValueError(f"unknown metric type {_type_label(metric_type)}")


def metric_family_to_openmetrics(
    out: IO[Any],
    family: MetricFamily,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
) -> int:
    """Write a family in OpenMetrics format to a text or binary stream.

    Counters named with a "_total" suffix have it dropped from the HELP, TYPE
    and UNIT lines; counters without it are typed "unknown". With with_unit,
    a declared unit is written and appended to the name if missing. With
    with_created_lines, "_created" lines follow series that carry a created
    timestamp. Returns the number of UTF-8 bytes written; raises ValueError
    (writing nothing) for a nameless family, an unknown type or a metric that
    does not match the family's type. The final "# EOF" line is left to
    finalize_openmetrics.
    """
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    metric_type = family.type
    is_total_counter = metric_type == MetricType.COUNTER and name.endswith("_total")
    compliant_name = name[: -len("_total")] if is_total_counter else name
    unit = family.unit if with_unit else None
    if unit is not None and not compliant_name.endswith("_" + unit):
        compliant_name = compliant_name + "_" + unit

    parts: list[str] = []
    if family.help is not None:
        parts.append(
            f"# HELP {format_name(compliant_name)} {escape_string(family.help, True)}\n"
        )
    parts.append(
        f"# TYPE {format_name(compliant_name)} {_type_line_name(metric_type, name)}\n"
    )
    if unit is not None:
        parts.append(f"# UNIT {format_name(compliant_name)} {escape_string(unit, True)}\n")

    if is_total_counter:
        compliant_name += "_total"
    for metric in family.metrics:
        parts.extend(_metric_lines(compliant_name, metric_type, metric, with_created_lines))

    return _write(out, "".join(parts))


def finalize_openmetrics(out: IO[Any]) -> int:
    """Write the closing "# EOF" line; returns the number of bytes written."""
    return _write(out, _EOF_LINE)