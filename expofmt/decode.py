"""Decoding of metric families from streams and extraction of samples."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from typing import IO

from .escaping import (
    ValidationScheme,
    is_valid_label_name,
    is_valid_label_value,
    is_valid_metric_name,
)
from .formats import Format, FormatType
from .model import (
    BUCKET_LABEL,
    METRIC_NAME_LABEL,
    QUANTILE_LABEL,
    Metric,
    MetricFamily,
    MetricType,
    Sample,
)
from .protowire import read_delimited
from .text_create import format_float


class SampleExtractionError(ValueError):
    """A family could not be turned into samples; carries what was extracted."""

    def __init__(self, message: str, samples: list[Sample] | None = None) -> None:
        super().__init__(message)
        self.samples: list[Sample] = samples if samples is not None else []


class ProtoDecoder:
    """Reads length-delimited protocol buffer metric families from a binary stream."""

    def __init__(
        self, stream: IO[bytes], validation: ValidationScheme = ValidationScheme.UTF8
    ) -> None:
        self.stream = stream
        self.validation = validation

    def decode(self) -> MetricFamily:
        """The next family; raises EOFError at the end and ValueError if invalid."""
        family = read_delimited(self.stream)
        if not is_valid_metric_name(family.name, self.validation):
            raise ValueError(f"invalid metric name {family.name!r}")
        for metric in family.metrics:
            for label in metric.labels:
                if not is_valid_label_value(label.value):
                    raise ValueError(f"invalid label value {label.value!r}")
                if not is_valid_label_name(label.name, self.validation):
                    raise ValueError(f"invalid label name {label.name!r}")
        return family

    def __iter__(self) -> Iterator[MetricFamily]:
        while True:
            try:
                yield self.decode()
            except EOFError:
                return


class SampleDecoder:
    """Wraps a family decoder and turns each decoded family into samples."""

    def __init__(self, decoder: ProtoDecoder, timestamp: int = 0) -> None:
        self.decoder = decoder
        self.timestamp = timestamp

    def decode(self) -> list[Sample]:
        """Samples of the next family; raises EOFError at the end."""
        return _extract(self.decoder.decode(), self.timestamp)

    def __iter__(self) -> Iterator[Sample]:
        """Every sample of every remaining family, in order."""
        while True:
            try:
                samples = self.decode()
            except EOFError:
                return
            yield from samples


def new_decoder(
    stream: IO[bytes],
    fmt: str,
    validation: ValidationScheme = ValidationScheme.UTF8,
) -> ProtoDecoder:
    """A decoder for the given format; only the delimited protocol buffer format is read."""
    if Format(fmt).format_type() == FormatType.PROTO_DELIM:
        return ProtoDecoder(stream, validation)
    raise ValueError(f"no decoder for format {fmt!r}")


def _labels(metric: Metric, name: str, **extra: str) -> dict[str, str]:
    labels = {lp.name: lp.value for lp in metric.labels}
    for key, value in extra.items():
        labels[key] = value
    labels[METRIC_NAME_LABEL] = name
    return labels


_SIMPLE_KINDS = {
    MetricType.COUNTER: "counter",
    MetricType.GAUGE: "gauge",
    MetricType.UNTYPED: "untyped",
}


def _extract(family: MetricFamily, timestamp: int) -> list[Sample]:
    name = family.name
    kind = family.type
    samples: list[Sample] = []

    def ts(metric: Metric) -> int:
        return metric.timestamp_ms if metric.timestamp_ms is not None else timestamp

    if kind in _SIMPLE_KINDS:
        attr = _SIMPLE_KINDS[kind]
        for metric in family.metrics:
            holder = getattr(metric, attr)
            if holder is not None:
                samples.append(Sample(_labels(metric, name), holder.value, ts(metric)))
        return samples

    if kind == MetricType.SUMMARY:
        for metric in family.metrics:
            summary = metric.summary
            if summary is None:
                continue
            t = ts(metric)
            for q in summary.quantiles:
                labels = _labels(metric, name, **{QUANTILE_LABEL: format_float(q.quantile)})
                samples.append(Sample(labels, q.value, t))
            samples.append(Sample(_labels(metric, name + "_sum"), summary.sample_sum, t))
            samples.append(
                Sample(_labels(metric, name + "_count"), float(summary.sample_count), t)
            )
        return samples

    if kind == MetricType.HISTOGRAM:
        for metric in family.metrics:
            histogram = metric.histogram
            if histogram is None:
                continue
            t = ts(metric)
            inf_seen = False
            for b in histogram.buckets:
                labels = _labels(metric, name + "_bucket", **{BUCKET_LABEL: format_float(b.upper_bound)})
                if math.isinf(b.upper_bound) and b.upper_bound > 0:
                    inf_seen = True
                samples.append(Sample(labels, float(b.cumulative_count), t))
            samples.append(Sample(_labels(metric, name + "_sum"), histogram.sample_sum, t))
            count = float(histogram.sample_count)
            samples.append(Sample(_labels(metric, name + "_count"), count, t))
            if not inf_seen:
                labels = _labels(metric, name + "_bucket", **{BUCKET_LABEL: "+Inf"})
                samples.append(Sample(labels, count, t))
        return samples

    raise SampleExtractionError(f"unknown metric family type {int(kind)}")


def extract_samples(families: Iterable[MetricFamily], timestamp: int = 0) -> list[Sample]:
    """Samples of all families; timestamp is used where a metric has none.

    Families that cannot be extracted are skipped; if any were, a
    SampleExtractionError for the last of them is raised, holding the samples
    extracted from the others.
    """
    collected: list[Sample] = []
    last_error: SampleExtractionError | None = None
    for family in families:
        try:
            collected.extend(_extract(family, timestamp))
        except SampleExtractionError as err:
            last_error = err
    if last_error is not None:
        raise SampleExtractionError(str(last_error), collected)
    return collected