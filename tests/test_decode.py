import io
import math

import pytest

from expofmt.decode import (
    ProtoDecoder,
    SampleDecoder,
    SampleExtractionError,
    extract_samples,
    new_decoder,
)
from expofmt.escaping import ValidationScheme
from expofmt.formats import FMT_PROTO_DELIM, FMT_TEXT
from expofmt.model import Counter, Gauge, Metric, MetricFamily, MetricType
from expofmt.protowire import write_delimited

T = 1_700_000_000_000
N = "__name__"

BAD_LABEL = (
    b"\x8f\x01\n\rrequest_count\x12\x12Number of requests\x18\x00\"0\n#\n\x0fsome_!abel_name"
    b"\x12\x10some_label_value\x1a\t\t\x00\x00\x00\x00\x00\x00E\xc0\"6\n)\n\x12another_label_name"
    b"\x12\x13another_label_value\x1a\t\t\x00\x00\x00\x00\x00\x00U@"
)
COUNTER = BAD_LABEL.replace(b"some_!abel_name", b"some_label_name")
SUMMARY = (
    b"\xb9\x01\n\rrequest_count\x12\x12Number of requests\x18\x02\"O\n#\n\x0fsome_label_name"
    b"\x12\x10some_label_value\"(\x1a\x12\t\xaeG\xe1z\x14\xae\xef?\x11\x00\x00\x00\x00\x00\x00E\xc0"
    b"\x1a\x12\t+\x87\x16\xd9\xce\xf7\xef?\x11\x00\x00\x00\x00\x00\x00U\xc0\"A\n)\n\x12another_label_name"
    b"\x12\x13another_label_value\"\x14\x1a\x12\t\x00\x00\x00\x00\x00\x00\xe0?\x11\x00\x00\x00\x00\x00\x00$@"
)
HIST_BODY = (
    b"\n\x1drequest_duration_microseconds\x12\x15The response latency.\x18\x04"
)
HIST_BUCKETS = (
    b"\x08\x85\x15\x11\xcd\xcc\xccL\x8f\xcb:A\x1a\x0b\x08{\x11\x00\x00\x00\x00\x00\x00Y@"
    b"\x1a\x0c\x08\x9c\x03\x11\x00\x00\x00\x00\x00\x00^@\x1a\x0c\x08\xd0\x04\x11\x00\x00\x00\x00\x00\x00b@"
    b"\x1a\x0c\x08\xf4\x0b\x11\x9a\x99\x99\x99\x99\x99e@"
)
HIST_INF = b"\x1a\x0c\x08\x85\x15\x11\x00\x00\x00\x00\x00\x00\xf0\x7f"
HISTOGRAM = b"\x8d\x01" + HIST_BODY + b"\"S:Q" + HIST_BUCKETS + HIST_INF
HISTOGRAM_NO_INF = b"\x7f" + HIST_BODY + b"\"E:C" + HIST_BUCKETS
UNTYPED_TYPE = b"\x1c\n\rrequest_count\"\x0b\x1a\t\t\x00\x00\x00\x00\x00\x00\xf0?"
UTF8 = (
    b"\xa8\x01\n\ngauge.name\x12\x11gauge\ndoc\nstr\"ing\x18\x01\"T\n\x1b\n\x06name.1\x12\x11val with\nnew line"
    b"\n*\n\x06name*2\x12 val with \\backslash and \"quotes\"\x12\t\t\x00\x00\x00\x00\x00\x00\xf0\x7f\"/"
    b"\n\x10\n\x06name.1\x12\x06Bj\xc3\xb6rn\n\x10\n\x06name*2\x12\x06\xe4\xbd\x96\xe4\xbd\xa5"
    b"\x12\t\t\xd1\xcfD\xb9\xd0\x05\xc2H"
)

HIST_EXPECTED = [
    ({N: "request_duration_microseconds_bucket", "le": "100"}, 123),
    ({N: "request_duration_microseconds_bucket", "le": "120"}, 412),
    ({N: "request_duration_microseconds_bucket", "le": "144"}, 592),
    ({N: "request_duration_microseconds_bucket", "le": "172.8"}, 1524),
    ({N: "request_duration_microseconds_bucket", "le": "+Inf"}, 2693),
    ({N: "request_duration_microseconds_sum"}, 1756047.3),
    ({N: "request_duration_microseconds_count"}, 2693),
]


def _key(metric, value, ts):
    return (sorted(metric.items()), value, ts)


def _decode_all(data, validation=ValidationScheme.LEGACY):
    dec = SampleDecoder(ProtoDecoder(io.BytesIO(data), validation), timestamp=T)
    return sorted(_key(s.metric, s.value, s.timestamp) for s in dec)


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"", []),
        (
            COUNTER,
            [
                ({N: "request_count", "some_label_name": "some_label_value"}, -42),
                ({N: "request_count", "another_label_name": "another_label_value"}, 84),
            ],
        ),
        (
            SUMMARY,
            [
                ({N: "request_count_count", "some_label_name": "some_label_value"}, 0),
                ({N: "request_count_sum", "some_label_name": "some_label_value"}, 0),
                ({N: "request_count", "some_label_name": "some_label_value", "quantile": "0.99"}, -42),
                ({N: "request_count", "some_label_name": "some_label_value", "quantile": "0.999"}, -84),
                ({N: "request_count_count", "another_label_name": "another_label_value"}, 0),
                ({N: "request_count_sum", "another_label_name": "another_label_value"}, 0),
                ({N: "request_count", "another_label_name": "another_label_value", "quantile": "0.5"}, 10),
            ],
        ),
        (HISTOGRAM, HIST_EXPECTED),
        (HISTOGRAM_NO_INF, HIST_EXPECTED),
        (UNTYPED_TYPE, [({N: "request_count"}, 1)]),
    ],
)
def test_proto_decoder_scenarios(data, expected):
    want = sorted(_key(m, float(v), T) for m, v in expected)
    assert _decode_all(data) == want


def test_invalid_label_name_fails_under_legacy():
    with pytest.raises(ValueError):
        ProtoDecoder(io.BytesIO(BAD_LABEL), ValidationScheme.LEGACY).decode()


def test_utf8_names_need_utf8_validation():
    with pytest.raises(ValueError):
        ProtoDecoder(io.BytesIO(UTF8), ValidationScheme.LEGACY).decode()
    got = _decode_all(UTF8, ValidationScheme.UTF8)
    want = sorted(
        [
            _key({N: "gauge.name", "name.1": "val with\nnew line",
                  "name*2": "val with \\backslash and \"quotes\""}, math.inf, T),
            _key({N: "gauge.name", "name.1": "Björn", "name*2": "佖佥"}, 3.14e42, T),
        ]
    )
    assert got == want


def test_new_decoder_reads_multiple_messages():
    buf = io.BytesIO()
    for name in ["a", "b", "c"]:
        write_delimited(buf, MetricFamily(name=name, type=MetricType.GAUGE,
                                          metrics=[Metric(gauge=Gauge(1.0))]))
    buf.seek(0)
    decoder = new_decoder(buf, FMT_PROTO_DELIM)
    assert [f.name for f in decoder] == ["a", "b", "c"]


def test_new_decoder_rejects_unsupported_format():
    with pytest.raises(ValueError):
        new_decoder(io.BytesIO(b""), FMT_TEXT)


def test_decode_raises_eof_at_end():
    with pytest.raises(EOFError):
        SampleDecoder(ProtoDecoder(io.BytesIO(b"")), 0).decode()


def test_extract_samples():
    foo = MetricFamily(name="foo", help="Help for foo.", type=MetricType.COUNTER,
                       metrics=[Metric(counter=Counter(4711))])
    bar = MetricFamily(name="bar", help="Help for bar.", type=MetricType.GAUGE,
                       metrics=[Metric(gauge=Gauge(3.14))])
    bad = MetricFamily(name="bad", help="Help for bad.", type=42,
                       metrics=[Metric(gauge=Gauge(2.7))])
    got = extract_samples([foo, bar], timestamp=42)
    want = [({N: "foo"}, 4711, 42), ({N: "bar"}, 3.14, 42)]
    assert [(s.metric, s.value, s.timestamp) for s in got] == want

    with pytest.raises(SampleExtractionError) as info:
        extract_samples([foo, bad, bar], timestamp=42)
    assert [(s.metric, s.value, s.timestamp) for s in info.value.samples] == want


def test_metric_timestamp_overrides_default():
    fam = MetricFamily(name="x", type=MetricType.GAUGE,
                       metrics=[Metric(gauge=Gauge(1.0), timestamp_ms=123456)])
    assert [s.timestamp for s in extract_samples([fam], timestamp=9)] == [123456]