import pytest

from expofmt.model import (
    Bucket,
    Counter,
    Exemplar,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Sample,
    Summary,
    Timestamp,
)


def test_unix_nanos_matches_source_created_timestamp():
    ts = Timestamp(12345, 600000000)
    assert ts.unix_nanos() / 1e9 == 12345.6


def test_unix_nanos_of_epoch_is_zero():
    ts = Timestamp(0, 0)
    ts.check_valid()
    assert ts.unix_nanos() == 0


def test_unix_nanos_is_monotonic_across_second_boundary():
    assert Timestamp(1, 0).unix_nanos() > Timestamp(0, 999_999_999).unix_nanos()


def test_unix_nanos_negative_seconds_symmetric():
    assert Timestamp(-1, 500_000_000).unix_nanos() == -Timestamp(0, 500_000_000).unix_nanos()


@pytest.mark.parametrize(
    "seconds, nanos",
    [(0, 1_000_000_000), (0, -1), (10**12, 0), (-(10**12), 0)],
)
def test_check_valid_rejects_out_of_range(seconds, nanos):
    with pytest.raises(ValueError):
        Timestamp(seconds, nanos).check_valid()


def test_family_defaults_to_counter_type():
    family = MetricFamily(name="name")
    assert family.type == MetricType.COUNTER
    assert family.help is None
    assert family.unit is None
    assert family.metrics == []


def test_metric_defaults_have_no_values():
    metric = Metric()
    assert metric.labels == []
    assert metric.timestamp_ms is None
    assert metric.counter is None and metric.histogram is None


def test_default_lists_are_not_shared():
    first, second = Metric(), Metric()
    first.labels.append(LabelPair("a", "b"))
    assert second.labels == []
    assert first.labels == [LabelPair("a", "b")]


def test_family_equality_compares_nested_values():
    make = lambda value: MetricFamily(
        name="foo",
        metrics=[Metric(counter=Counter(value=value, exemplar=Exemplar(labels=[LabelPair("a", "b")])))],
    )
    assert make(4711) == make(4711)
    assert make(4711) != make(42)


def test_histogram_and_summary_hold_their_parts():
    hist = Histogram(sample_count=2693, buckets=[Bucket(upper_bound=100, cumulative_count=123)])
    summary = Summary(sample_count=42, sample_sum=-3.4567)
    assert hist.buckets[0].cumulative_count == 123
    assert hist.buckets[0].exemplar is None
    assert summary.quantiles == []
    assert summary.sample_sum == -3.4567


def test_sample_equality():
    a = Sample(metric={"__name__": "foo"}, value=4711, timestamp=42)
    b = Sample(metric={"__name__": "foo"}, value=4711, timestamp=42)
    assert a == b
    assert a != Sample(metric={"__name__": "bar"}, value=4711, timestamp=42)