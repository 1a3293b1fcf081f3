# expofmt

`expofmt` writes metric families in the common exposition formats:

- the classic text format (`text/plain; version=0.0.4`)
- OpenMetrics text (`application/openmetrics-text`, versions 0.0.1 and 1.0.0)
- length-delimited protobuf, and the protobuf text and compact-text forms

It reads length-delimited protobuf back into metric families. It can also
turn those families into flat samples.

It handles HTTP content negotiation too. It picks an output format from an
`Accept` header, and it works out the input format from a `Content-Type`
header.

The package uses only the standard library.

## Installing

```
pip install expofmt
```

## The data model

`expofmt.model` holds plain dataclasses:

- `MetricFamily`, with the fields `name`, `help`, `type`, `metrics` and `unit`
- `Metric`, with the fields `labels`, `timestamp_ms`, and one of `counter`,
  `gauge`, `untyped`, `summary` or `histogram`
- `LabelPair`, `Counter`, `Gauge`, `Untyped`, `Summary`, `Quantile`,
  `Histogram`, `Bucket` and `Exemplar`
- `Timestamp`, which holds seconds and nanoseconds. It has `check_valid()`
  and `unix_nanos()`.
- `Sample`, which holds a label dict, a value and a timestamp in milliseconds

`MetricType` lists the family types: `COUNTER`, `GAUGE`, `SUMMARY`,
`UNTYPED` and `HISTOGRAM`. It also lists `GAUGE_HISTOGRAM`, but the
writers do not accept that type.

## Writing the text format

```python
import io
from expofmt.model import Counter, Metric, MetricFamily, MetricType
from expofmt.text_create import metric_family_to_text

family = MetricFamily(
    name="requests_total",
    help="Number of requests.",
    type=MetricType.COUNTER,
    metrics=[Metric(counter=Counter(value=42))],
)
out = io.StringIO()
metric_family_to_text(out, family)
print(out.getvalue())
```

`metric_family_to_text` writes to a text stream or to a binary stream. It
returns the number of UTF-8 bytes written.

It raises `ValueError`, and writes nothing, in these cases:

- the family has no metrics
- the family has no name
- the family's type is unknown
- a metric does not match the family's type

Names that are not legacy-valid are written in double quotes. A metric name
of that kind is placed inside the braces. Histograms without a `+Inf` bucket
get one added.

The module also exposes its helpers:

- `format_float`
- `escape_string`
- `format_name`

## Writing OpenMetrics

`expofmt.openmetrics_create.metric_family_to_openmetrics(out, family, *,
with_created_lines=False, with_unit=False)` writes one family.

A counter named with a `_total` suffix loses that suffix on its `# HELP`,
`# TYPE` and `# UNIT` lines. A counter named without the suffix is typed
`unknown`.

The two options add output:

- `with_unit=True` writes a `# UNIT` line, and appends the unit to the name
  if the name does not already end with it.
- `with_created_lines=True` writes `_created` lines after each series that
  has a created timestamp.

Call `finalize_openmetrics(out)` once, after the last family. It writes the
closing `# EOF` line. `format_openmetrics_float` renders a float so that it
always has a `.` or an exponent.

## Content negotiation and encoders

```python
import io
from expofmt.encode import negotiate, new_encoder

fmt = negotiate({"Accept": "text/plain;version=0.0.4"})
out = io.StringIO()
with new_encoder(out, fmt) as encoder:
    encoder.encode(family)
```

How the negotiation functions work:

- `negotiate(headers, default_scheme)` never chooses OpenMetrics. It falls
  back to the text format.
- `negotiate_including_openmetrics` can also choose OpenMetrics.
- Each returns a `Format` that ends with an `escaping=` term. That term is
  taken from the `Accept` header when it names a known scheme. Otherwise it
  comes from `default_scheme`, which defaults to underscores.

`new_encoder(out, fmt, *, with_created_lines=False, with_unit=False,
default_scheme=...)` returns an `Encoder`:

- It raises `ValueError` for an unknown format.
- `Encoder.encode(family)` escapes the names according to the format, then
  writes the family. Delimited protobuf is written unescaped.
- `Encoder.close()` writes `# EOF` for OpenMetrics and does nothing for the
  other formats. Using the encoder as a context manager calls it for you.
- Delimited protobuf needs a binary stream.

## Formats

`expofmt.formats.Format` is a `str` subclass with three methods:

- `format_type()` returns a `FormatType`, one of `UNKNOWN`,
  `PROTO_COMPACT`, `PROTO_DELIM`, `PROTO_TEXT`, `TEXT_PLAIN` or `OPENMETRICS`.
- `to_escaping_scheme(default)` returns the scheme named in the string, or
  `default`.
- `with_escaping_scheme(scheme)` replaces any escaping terms with one for
  `scheme`.

The module also has these functions:

- `new_format(format_type)` returns the format for a type, in its latest
  version.
- `new_openmetrics_format(version)` returns the OpenMetrics format for
  `version`. It raises `ValueError` for an unknown version.
- `response_format(headers)` reads a `Content-Type` header. It returns the
  delimited protobuf format, the text format, or `FMT_UNKNOWN`.

## Reading metrics

```python
from expofmt.decode import SampleDecoder, new_decoder
from expofmt.formats import FMT_PROTO_DELIM

with open("metrics.bin", "rb") as stream:
    for sample in SampleDecoder(new_decoder(stream, FMT_PROTO_DELIM), timestamp=1000):
        print(sample.metric, sample.value, sample.timestamp)
```

`new_decoder(stream, fmt, validation)` returns a `ProtoDecoder`:

- `validation` is `ValidationScheme.UTF8` (the default) or
  `ValidationScheme.LEGACY`.
- `ProtoDecoder.decode()` returns the next `MetricFamily`. It raises
  `EOFError` at the end of the stream. It raises `ValueError` for malformed
  data, and for metric names, label names or label values that are not valid.
- Iterating over a `ProtoDecoder` yields families until the stream ends.

`SampleDecoder(decoder, timestamp)` works like this:

- `decode()` returns the samples of the next family.
- Iterating over it yields every sample of the remaining families.
- `timestamp` is used for metrics that carry none.

`extract_samples(families, timestamp)` does the same for families you already
have.

The samples follow the usual naming rules:

- summaries give `quantile`-labelled samples plus `_sum` and `_count`
- histograms give `_bucket` samples with `le`, plus `_sum` and `_count`, and
  a `+Inf` bucket where none is present

A family of an unknown type raises `SampleExtractionError`.
`extract_samples` skips such families and raises the error only at the end.
The error's `samples` attribute holds everything extracted from the other
families.

`expofmt.protowire` has the wire helpers:

- `encode_metric_family` and `decode_metric_family`
- `write_delimited` and `read_delimited`
- `format_text(family, compact)`, which renders the protobuf text form

## Name escaping

`expofmt.escaping` validates names:

- `is_valid_legacy_metric_name`
- `is_valid_metric_name`
- `is_valid_label_name`
- `is_valid_label_value`

It also rewrites names:

- `escape_name(name, scheme)` rewrites a single name.
- `escape_metric_family(family, scheme)` returns a new family with its names
  rewritten. The input family is not changed.
- `to_escaping_scheme(value)` parses a scheme name.

The schemes in `EscapingScheme` are `allow-utf-8` (no escaping),
`underscores`, `dots` and `values`.

## What it does not do

The package does not parse the classic text format or OpenMetrics text.
`new_decoder` reads only length-delimited protobuf, and raises `ValueError`
for any other format. There is no command-line tool and no HTTP server. The
negotiation functions take a plain header mapping, which you pass in from the
web framework you use.