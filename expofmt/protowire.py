"""Protocol buffer wire encoding of metric families, plain and length-delimited."""

from __future__ import annotations

import math
import struct
from collections.abc import Iterator
from typing import IO, Any

from .model import (
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
from .text_create import _shortest_general

_U64 = (1 << 64) - 1
_VARINT, _FIXED64, _LEN, _FIXED32 = 0, 1, 2, 5


# ---------------------------------------------------------------- encoding


def _varint(value: int) -> bytes:
    value &= _U64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(field_number: int, wire_type: int) -> bytes:
    return _varint(field_number << 3 | wire_type)


def _len_field(field_number: int, data: bytes) -> bytes:
    return _key(field_number, _LEN) + _varint(len(data)) + data


def _str_field(field_number: int, value: str) -> bytes:
    return _len_field(field_number, value.encode("utf-8", "surrogateescape"))


def _double_field(field_number: int, value: float) -> bytes:
    return _key(field_number, _FIXED64) + struct.pack("<d", value)


def _int_field(field_number: int, value: int) -> bytes:
    return _key(field_number, _VARINT) + _varint(value)


def _enc_labels(field_number: int, labels: list[LabelPair]) -> bytes:
    return b"".join(
        _len_field(field_number, _str_field(1, lp.name) + _str_field(2, lp.value))
        for lp in labels
    )


def _enc_timestamp(field_number: int, ts: Timestamp | None) -> bytes:
    if ts is None:
        return b""
    return _len_field(field_number, _int_field(1, ts.seconds) + _int_field(2, ts.nanos))


def _enc_exemplar(field_number: int, exemplar: Exemplar | None) -> bytes:
    if exemplar is None:
        return b""
    body = (
        _enc_labels(1, exemplar.labels)
        + _double_field(2, exemplar.value)
        + _enc_timestamp(3, exemplar.timestamp)
    )
    return _len_field(field_number, body)


def _enc_metric(metric: Metric) -> bytes:
    parts = [_enc_labels(1, metric.labels)]
    if metric.gauge is not None:
        parts.append(_len_field(2, _double_field(1, metric.gauge.value)))
    if metric.counter is not None:
        c = metric.counter
        parts.append(
            _len_field(
                3,
                _double_field(1, c.value)
                + _enc_exemplar(2, c.exemplar)
                + _enc_timestamp(3, c.created_timestamp),
            )
        )
    if metric.summary is not None:
        s = metric.summary
        quantiles = b"".join(
            _len_field(3, _double_field(1, q.quantile) + _double_field(2, q.value))
            for q in s.quantiles
        )
        parts.append(
            _len_field(
                4,
                _int_field(1, s.sample_count)
                + _double_field(2, s.sample_sum)
                + quantiles
                + _enc_timestamp(4, s.created_timestamp),
            )
        )
    if metric.untyped is not None:
        parts.append(_len_field(5, _double_field(1, metric.untyped.value)))
    if metric.timestamp_ms is not None:
        parts.append(_int_field(6, metric.timestamp_ms))
    if metric.histogram is not None:
        h = metric.histogram
        buckets = b"".join(
            _len_field(
                3,
                _int_field(1, b.cumulative_count)
                + _double_field(2, b.upper_bound)
                + _enc_exemplar(3, b.exemplar),
            )
            for b in h.buckets
        )
        parts.append(
            _len_field(
                7,
                _int_field(1, h.sample_count)
                + _double_field(2, h.sample_sum)
                + buckets
                + _enc_timestamp(15, h.created_timestamp),
            )
        )
    return b"".join(parts)


def encode_metric_family(family: MetricFamily) -> bytes:
    """Serialize a family as a protocol buffer message."""
    parts = []
    if family.name:
        parts.append(_str_field(1, family.name))
    if family.help is not None:
        parts.append(_str_field(2, family.help))
    parts.append(_int_field(3, int(family.type)))
    parts.extend(_len_field(4, _enc_metric(m)) for m in family.metrics)
    if family.unit is not None:
        parts.append(_str_field(5, family.unit))
    return b"".join(parts)


def write_delimited(out: IO[bytes], family: MetricFamily) -> int:
    """Write a length-prefixed message; returns the number of bytes written."""
    data = encode_metric_family(family)
    framed = _varint(len(data)) + data
    out.write(framed)
    return len(framed)


# ---------------------------------------------------------------- decoding


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _U64, pos
    raise ValueError("varint too long")


def _fields(data: bytes) -> Iterator[tuple[int, int, Any]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        field_number, wire_type = key >> 3, key & 7
        if field_number == 0:
            raise ValueError("invalid field number 0")
        if wire_type == _VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type in (_FIXED64, _FIXED32):
            size = 8 if wire_type == _FIXED64 else 4
            if pos + size > len(data):
                raise ValueError("truncated fixed-width field")
            value = data[pos:pos + size]
            pos += size
        elif wire_type == _LEN:
            length, pos = _read_varint(data, pos)
            if pos + length > len(data):
                raise ValueError("truncated length-delimited field")
            value = data[pos:pos + length]
            pos += length
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield field_number, wire_type, value


def _expect(wire_type: int, wanted: int, field_number: int) -> None:
    if wire_type != wanted:
        raise ValueError(f"field {field_number} has wire type {wire_type}, want {wanted}")


def _double(f: int, wt: int, v: Any) -> float:
    _expect(wt, _FIXED64, f)
    return struct.unpack("<d", v)[0]


def _signed(f: int, wt: int, v: Any, bits: int = 64) -> int:
    _expect(wt, _VARINT, f)
    v &= (1 << bits) - 1
    return v - (1 << bits) if v >> (bits - 1) else v


def _unsigned(f: int, wt: int, v: Any) -> int:
    _expect(wt, _VARINT, f)
    return v


def _string(f: int, wt: int, v: Any) -> str:
    _expect(wt, _LEN, f)
    return bytes(v).decode("utf-8", "surrogateescape")


def _sub(f: int, wt: int, v: Any) -> bytes:
    _expect(wt, _LEN, f)
    return bytes(v)


def _dec_label(data: bytes) -> LabelPair:
    lp = LabelPair()
    for f, wt, v in _fields(data):
        if f == 1:
            lp.name = _string(f, wt, v)
        elif f == 2:
            lp.value = _string(f, wt, v)
    return lp


def _dec_timestamp(data: bytes) -> Timestamp:
    ts = Timestamp()
    for f, wt, v in _fields(data):
        if f == 1:
            ts.seconds = _signed(f, wt, v)
        elif f == 2:
            ts.nanos = _signed(f, wt, v, 32)
    return ts


def _dec_exemplar(data: bytes) -> Exemplar:
    ex = Exemplar()
    for f, wt, v in _fields(data):
        if f == 1:
            ex.labels.append(_dec_label(_sub(f, wt, v)))
        elif f == 2:
            ex.value = _double(f, wt, v)
        elif f == 3:
            ex.timestamp = _dec_timestamp(_sub(f, wt, v))
    return ex


def _dec_single_value(data: bytes, cls):
    obj = cls()
    for f, wt, v in _fields(data):
        if f == 1:
            obj.value = _double(f, wt, v)
    return obj


def _dec_counter(data: bytes) -> Counter:
    c = Counter()
    for f, wt, v in _fields(data):
        if f == 1:
            c.value = _double(f, wt, v)
        elif f == 2:
            c.exemplar = _dec_exemplar(_sub(f, wt, v))
        elif f == 3:
            c.created_timestamp = _dec_timestamp(_sub(f, wt, v))
    return c


def _dec_quantile(data: bytes) -> Quantile:
    q = Quantile()
    for f, wt, v in _fields(data):
        if f == 1:
            q.quantile = _double(f, wt, v)
        elif f == 2:
            q.value = _double(f, wt, v)
    return q


def _dec_summary(data: bytes) -> Summary:
    s = Summary()
    for f, wt, v in _fields(data):
        if f == 1:
            s.sample_count = _unsigned(f, wt, v)
        elif f == 2:
            s.sample_sum = _double(f, wt, v)
        elif f == 3:
            s.quantiles.append(_dec_quantile(_sub(f, wt, v)))
        elif f == 4:
            s.created_timestamp = _dec_timestamp(_sub(f, wt, v))
    return s


def _dec_bucket(data: bytes) -> Bucket:
    b = Bucket()
    for f, wt, v in _fields(data):
        if f == 1:
            b.cumulative_count = _unsigned(f, wt, v)
        elif f == 2:
            b.upper_bound = _double(f, wt, v)
        elif f == 3:
            b.exemplar = _dec_exemplar(_sub(f, wt, v))
    return b


def _dec_histogram(data: bytes) -> Histogram:
    h = Histogram()
    for f, wt, v in _fields(data):
        if f == 1:
            h.sample_count = _unsigned(f, wt, v)
        elif f == 2:
            h.sample_sum = _double(f, wt, v)
        elif f == 3:
            h.buckets.append(_dec_bucket(_sub(f, wt, v)))
        elif f == 15:
            h.created_timestamp = _dec_timestamp(_sub(f, wt, v))
    return h


def _dec_metric(data: bytes) -> Metric:
    m = Metric()
    for f, wt, v in _fields(data):
        if f == 1:
            m.labels.append(_dec_label(_sub(f, wt, v)))
        elif f == 2:
            m.gauge = _dec_single_value(_sub(f, wt, v), Gauge)
        elif f == 3:
            m.counter = _dec_counter(_sub(f, wt, v))
        elif f == 4:
            m.summary = _dec_summary(_sub(f, wt, v))
        elif f == 5:
            m.untyped = _dec_single_value(_sub(f, wt, v), Untyped)
        elif f == 6:
            m.timestamp_ms = _signed(f, wt, v)
        elif f == 7:
            m.histogram = _dec_histogram(_sub(f, wt, v))
    return m


def decode_metric_family(data: bytes) -> MetricFamily:
    """Parse a protocol buffer message into a family; raises ValueError if malformed."""
    family = MetricFamily()
    for f, wt, v in _fields(bytes(data)):
        if f == 1:
            family.name = _string(f, wt, v)
        elif f == 2:
            family.help = _string(f, wt, v)
        elif f == 3:
            raw = _signed(f, wt, v, 32)
            try:
                family.type = MetricType(raw)
            except ValueError:
                family.type = raw
        elif f == 4:
            family.metrics.append(_dec_metric(_sub(f, wt, v)))
        elif f == 5:
            family.unit = _string(f, wt, v)
    return family


def read_delimited(stream: IO[bytes]) -> MetricFamily:
    """Read one length-prefixed message.

    Raises EOFError if the stream is exhausted before the message starts and
    ValueError if it ends inside one or the message is malformed.
    """
    length = 0
    for shift in range(0, 70, 7):
        byte = stream.read(1)
        if not byte:
            if shift == 0:
                raise EOFError("end of stream")
            raise ValueError("unexpected end of stream in length prefix")
        length |= (byte[0] & 0x7F) << shift
        if not byte[0] & 0x80:
            break
    else:
        raise ValueError("length prefix too long")

    chunks = []
    remaining = length
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise ValueError("unexpected end of stream in message")
        chunks.append(chunk)
        remaining -= len(chunk)
    return decode_metric_family(b"".join(chunks))


# ---------------------------------------------------------------- text form


def _float_text(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return _shortest_general(float(value))


def _quote(value: str) -> str:
    out = []
    for byte_or_char in value:
        code = ord(byte_or_char)
        if byte_or_char == "\\":
            out.append("\\\\")
        elif byte_or_char == '"':
            out.append('\\"')
        elif byte_or_char == "\n":
            out.append("\\n")
        elif byte_or_char == "\r":
            out.append("\\r")
        elif byte_or_char == "\t":
            out.append("\\t")
        elif 0xDC80 <= code <= 0xDCFF:
            out.append(f"\\{code - 0xDC00:03o}")
        elif code < 0x20 or code == 0x7F:
            out.append(f"\\{code:03o}")
        else:
            out.append(byte_or_char)
    return '"' + "".join(out) + '"'


_Tree = list  # list of (name, str | _Tree)


def _labels_tree(labels: list[LabelPair]) -> _Tree:
    return [
        ("label", [("name", _quote(lp.name)), ("value", _quote(lp.value))]) for lp in labels
    ]


def _ts_tree(ts: Timestamp) -> _Tree:
    return [("seconds", str(ts.seconds)), ("nanos", str(ts.nanos))]


def _exemplar_tree(ex: Exemplar) -> _Tree:
    tree = _labels_tree(ex.labels) + [("value", _float_text(ex.value))]
    if ex.timestamp is not None:
        tree.append(("timestamp", _ts_tree(ex.timestamp)))
    return tree


def _metric_tree(m: Metric) -> _Tree:
    tree = _labels_tree(m.labels)
    if m.gauge is not None:
        tree.append(("gauge", [("value", _float_text(m.gauge.value))]))
    if m.counter is not None:
        c = m.counter
        sub: _Tree = [("value", _float_text(c.value))]
        if c.exemplar is not None:
            sub.append(("exemplar", _exemplar_tree(c.exemplar)))
        if c.created_timestamp is not None:
            sub.append(("created_timestamp", _ts_tree(c.created_timestamp)))
        tree.append(("counter", sub))
    if m.summary is not None:
        s = m.summary
        sub = [("sample_count", str(s.sample_count)), ("sample_sum", _float_text(s.sample_sum))]
        sub.extend(
            ("quantile", [("quantile", _float_text(q.quantile)), ("value", _float_text(q.value))])
            for q in s.quantiles
        )
        if s.created_timestamp is not None:
            sub.append(("created_timestamp", _ts_tree(s.created_timestamp)))
        tree.append(("summary", sub))
    if m.untyped is not None:
        tree.append(("untyped", [("value", _float_text(m.untyped.value))]))
    if m.timestamp_ms is not None:
        tree.append(("timestamp_ms", str(m.timestamp_ms)))
    if m.histogram is not None:
        h = m.histogram
        sub = [("sample_count", str(h.sample_count)), ("sample_sum", _float_text(h.sample_sum))]
        for b in h.buckets:
            bucket: _Tree = [
                ("cumulative_count", str(b.cumulative_count)),
                ("upper_bound", _float_text(b.upper_bound)),
            ]
            if b.exemplar is not None:
                bucket.append(("exemplar", _exemplar_tree(b.exemplar)))
            sub.append(("bucket", bucket))
        if h.created_timestamp is not None:
            sub.append(("created_timestamp", _ts_tree(h.created_timestamp)))
        tree.append(("histogram", sub))
    return tree


def _family_tree(family: MetricFamily) -> _Tree:
    tree: _Tree = []
    if family.name:
        tree.append(("name", _quote(family.name)))
    if family.help is not None:
        tree.append(("help", _quote(family.help)))
    try:
        type_text = MetricType(family.type).name
    except ValueError:
        type_text = str(int(family.type))
    tree.append(("type", type_text))
    tree.extend(("metric", _metric_tree(m)) for m in family.metrics)
    if family.unit is not None:
        tree.append(("unit", _quote(family.unit)))
    return tree


def _render_compact(tree: _Tree) -> str:
    return " ".join(
        f"{k}:{v}" if isinstance(v, str) else f"{k}:{{{_render_compact(v)}}}" for k, v in tree
    )


def _render_lines(tree: _Tree, indent: str) -> list[str]:
    lines = []
    for k, v in tree:
        if isinstance(v, str):
            lines.append(f"{indent}{k}: {v}")
        else:
            lines.append(f"{indent}{k}: {{")
            lines.extend(_render_lines(v, indent + "  "))
            lines.append(f"{indent}}}")
    return lines


def format_text(family: MetricFamily, compact: bool = False) -> str:
    """Render a family in protocol buffer text form, on one line if compact."""
    tree = _family_tree(family)
    if compact:
        return _render_compact(tree)
    return "\n".join(_render_lines(tree, ""))