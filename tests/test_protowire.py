import io
import math

import pytest

from expofmt.model import (
    Bucket,
    Counter,
    Exemplar,
    Gauge,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Quantile,
    Summary,
    Timestamp,
    Untyped,
)
from expofmt.protowire import (
    decode_metric_family,
    encode_metric_family,
    format_text,
    read_delimited,
    write_delimited,
)

COUNTER_BYTES = (
    b"\x8f\x01\n\rrequest_count\x12\x12Number of requests\x18\x00\"0\n#\n\x0fsome_label_name"
    b"\x12\x10some_label_value\x1a\t\t\x00\x00\x00\x00\x00\x00E\xc0\"6\n)\n\x12another_label_name"
    b"\x12\x13another_label_value\x1a\t\t\x00\x00\x00\x00\x00\x00U@"
)


def _full_family():
    ts = Timestamp(12345, 600000000)
    return MetricFamily(
        name="everything",
        help="help\ntext",
        type=MetricType.HISTOGRAM,
        unit="seconds",
        metrics=[
            Metric(
                labels=[LabelPair("a", "Björn"), LabelPair("b", "佖佥")],
                histogram=Histogram(
                    sample_count=7,
                    sample_sum=1.5,
                    buckets=[
                        Bucket(1.0, 3, Exemplar([LabelPair("foo", "bar")], 0.5, ts)),
                        Bucket(math.inf, 7),
                    ],
                    created_timestamp=ts,
                ),
                timestamp_ms=-1234,
            ),
            Metric(counter=Counter(2.5, Exemplar([LabelPair("x", "y")], 1.0), ts)),
            Metric(summary=Summary(4, 9.5, [Quantile(0.5, 1.0)], ts)),
            Metric(gauge=Gauge(-3.25)),
            Metric(untyped=Untyped(0.0)),
        ],
    )


def test_decode_known_message():
    family = read_delimited(io.BytesIO(COUNTER_BYTES))
    assert family.name == "request_count"
    assert family.help == "Number of requests"
    assert family.type == MetricType.COUNTER
    assert [m.labels for m in family.metrics] == [
        [LabelPair("some_label_name", "some_label_value")],
        [LabelPair("another_label_name", "another_label_value")],
    ]
    assert [m.counter.value for m in family.metrics] == [-42.0, 84.0]


def test_round_trip_full_family():
    family = _full_family()
    assert decode_metric_family(encode_metric_family(family)) == family


def test_reencoding_known_message_is_stable():
    family = read_delimited(io.BytesIO(COUNTER_BYTES))
    assert decode_metric_family(encode_metric_family(family)) == family


def test_delimited_round_trip_and_eof():
    buf = io.BytesIO()
    families = [_full_family(), MetricFamily(name="other", type=MetricType.GAUGE)]
    total = sum(write_delimited(buf, f) for f in families)
    assert total == len(buf.getvalue())
    buf.seek(0)
    assert [read_delimited(buf), read_delimited(buf)] == families
    with pytest.raises(EOFError):
        read_delimited(buf)


def test_pinned_wire_bytes():
    assert encode_metric_family(MetricFamily(name="a", type=MetricType.GAUGE)) == b"\n\x01a\x18\x01"


def test_empty_stream_is_eof():
    with pytest.raises(EOFError):
        read_delimited(io.BytesIO(b""))


def test_truncated_message_raises():
    with pytest.raises(ValueError):
        read_delimited(io.BytesIO(COUNTER_BYTES[:-3]))


def test_bad_wire_type_raises():
    with pytest.raises(ValueError):
        decode_metric_family(b"\x0b")


def test_unknown_fields_are_skipped():
    family = decode_metric_family(b"\n\x01a\x30\x05")
    assert family.name == "a"


def test_format_text_compact_and_multiline():
    family = MetricFamily(name="foo", type=MetricType.UNTYPED, metrics=[Metric(untyped=Untyped(1.234))])
    compact = format_text(family, compact=True)
    multi = format_text(family)
    assert "\n" not in compact
    assert compact.startswith('name:"foo" type:UNTYPED')
    assert multi.splitlines()[0] == 'name: "foo"'
    assert "1.234" in compact and "1.234" in multi