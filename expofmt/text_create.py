"""Rendering of metric families in the plain text exposition format."""

from __future__ import annotations

import math
from collections.abc import Iterable
from decimal import Decimal
from typing import IO, Any

from .escaping import is_valid_legacy_metric_name
from .model import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
)

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n"})
_QUOTED_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", '"': '\\"'})

_TYPE_NAMES = {
    MetricType.COUNTER: "counter",
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "untyped",
    MetricType.HISTOGRAM: "histogram",
}


def escape_string(value: str, include_double_quote: bool = False) -> str:
    """Escape backslashes and newlines, and double quotes if asked to."""
    return value.translate(_QUOTED_ESCAPES if include_double_quote else _ESCAPES)


def format_name(name: str) -> str:
    """The name as is if legacy-valid, otherwise escaped inside double quotes."""
    if is_valid_legacy_metric_name(name):
        return name
    return '"' + escape_string(name, True) + '"'


def _shortest_general(value: float) -> str:
    """Shortest round-tripping digits, in %g style with a six-digit exponent threshold."""
    sign = "-" if value < 0 else ""
    digits_tuple = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(d) for d in digits_tuple.digits)
    exponent = int(digits_tuple.exponent)
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    digits = stripped or "0"
    decimal_point = len(digits) + exponent
    exp = decimal_point - 1

    if exp < -4 or exp >= 6:
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        exp_sign = "-" if exp < 0 else "+"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp):02d}"
    if decimal_point <= 0:
        return f"{sign}0.{'0' * -decimal_point}{digits}"
    if decimal_point >= len(digits):
        return sign + digits + "0" * (decimal_point - len(digits))
    return f"{sign}{digits[:decimal_point]}.{digits[decimal_point:]}"


def format_float(value: float) -> str:
    """Render a sample value the way the text format expects."""
    if value == 1:
        return "1"
    if value == 0:
        return "0"
    if value == -1:
        return "-1"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return _shortest_general(float(value))


def _name_and_labels(
    name: str,
    labels: Iterable[LabelPair],
    extra: tuple[str, float] | None,
    float_formatter=format_float,
) -> str:
    head = ""
    items: list[str] = []
    if name:
        if is_valid_legacy_metric_name(name):
            head = name
        else:
            items.append(format_name(name))

    labels = list(labels)
    if not labels and extra is None:
        return head + ("{" + items[0] + "}" if items else "")

    items.extend(
        f'{format_name(label.name)}="{escape_string(label.value, True)}"'
        for label in labels
    )
    if extra is not None:
        items.append(f'{extra[0]}="{float_formatter(extra[1])}"')
    return head + "{" + ",".join(items) + "}"


def _sample_line(
    name: str,
    suffix: str,
    metric: Metric,
    extra: tuple[str, float] | None,
    value: float,
) -> str:
    line = _name_and_labels(name + suffix, metric.labels, extra) + " " + format_float(value)
    if metric.timestamp_ms is not None:
        line += f" {metric.timestamp_ms}"
    return line + "\n"


def _type_label(metric_type: int) -> str:
    try:
        return MetricType(metric_type).name
    except ValueError:
        return str(metric_type)


def _metric_lines(name: str, metric_type: int, metric: Metric) -> list[str]:
    if metric_type == MetricType.COUNTER:
        if metric.counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        return [_sample_line(name, "", metric, None, metric.counter.value)]
    if metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric}")
        return [_sample_line(name, "", metric, None, metric.gauge.value)]
    if metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric}")
        return [_sample_line(name, "", metric, None, metric.untyped.value)]
    if metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric}")
        lines = [
            _sample_line(name, "", metric, (QUANTILE_LABEL, q.quantile), q.value)
            for q in summary.quantiles
        ]
        lines.append(_sample_line(name, "_sum", metric, None, summary.sample_sum))
        lines.append(_sample_line(name, "_count", metric, None, float(summary.sample_count)))
        return lines
    if metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric}")
        lines = [
            _sample_line(
                name, "_bucket", metric, (BUCKET_LABEL, b.upper_bound), float(b.cumulative_count)
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
                    float(histogram.sample_count),
                )
            )
        lines.append(_sample_line(name, "_sum", metric, None, histogram.sample_sum))
        lines.append(_sample_line(name, "_count", metric, None, float(histogram.sample_count)))
        return lines
    raise ValueError(f"unexpected type in metric {name} {metric}")


def _write(out: IO[Any], text: str) -> int:
    data = text.encode("utf-8")
    try:
        out.write(text)
    except TypeError:
        out.write(data)
    return len(data)


def metric_family_to_text(out: IO[Any], family: MetricFamily) -> int:
    """Write a family in text format to a text or binary stream.

    Returns the number of UTF-8 bytes written. Raises ValueError for a family
    without metrics or name, of an unknown type, or whose metrics do not match
    its type; nothing is written in that case.
    """
    if not family.metrics:
        raise ValueError(f"MetricFamily has no metrics: {family}")
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    metric_type = family.type
    if metric_type not in _TYPE_NAMES:
        raise ValueError(f"unknown metric type {_type_label(metric_type)}")

    parts: list[str] = []
    if family.help is not None:
        parts.append(f"# HELP {format_name(name)} {escape_string(family.help, False)}\n")
    parts.append(f"# TYPE {format_name(name)} {_TYPE_NAMES[MetricType(metric_type)]}\n")
    for metric in family.metrics:
        parts.extend(_metric_lines(name, metric_type, metric))

    return _write(out, "".join(parts))