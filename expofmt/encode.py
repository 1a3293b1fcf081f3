"""Content negotiation and encoding of metric families into a wire format."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import IO, Any

from .escaping import (
    DEFAULT_ESCAPING_SCHEME,
    ESCAPING_KEY,
    EscapingScheme,
    escape_metric_family,
)
from .formats import (
    FMT_OPENMETRICS_0_0_1,
    FMT_OPENMETRICS_1_0_0,
    FMT_PROTO_COMPACT,
    FMT_PROTO_DELIM,
    FMT_PROTO_TEXT,
    FMT_TEXT,
    HDR_ACCEPT,
    OPENMETRICS_TYPE,
    OPENMETRICS_VERSION_0_0_1,
    OPENMETRICS_VERSION_1_0_0,
    PROTO_PROTOCOL,
    PROTO_TYPE,
    TEXT_VERSION,
    Format,
    FormatType,
    _header,
)
from .model import MetricFamily
from .openmetrics_create import finalize_openmetrics, metric_family_to_openmetrics
from .protowire import format_text, write_delimited
from .text_create import _write, metric_family_to_text

_KNOWN_SCHEMES = {scheme.value for scheme in EscapingScheme}

_PROTO_ENCODING_FORMATS = {
    "delimited": FMT_PROTO_DELIM,
    "text": FMT_PROTO_TEXT,
    "compact-text": FMT_PROTO_COMPACT,
}


@dataclass
class _Accept:
    type: str
    subtype: str
    q: float = 1.0
    params: dict[str, str] = field(default_factory=dict)


def _parse_accept(header: str) -> list[_Accept]:
    """Parse an Accept header into media ranges, most preferred first."""
    accepted: list[_Accept] = []
    for part in header.split(","):
        pieces = part.strip(" ").split(";")
        media = pieces[0].split("/")
        media_type = media[0].strip(" ")
        if len(media) == 1 and media_type == "*":
            subtype = "*"
        elif len(media) == 2:
            subtype = media[1].strip(" ")
        else:
            continue
        entry = _Accept(media_type, subtype)
        for param in pieces[1:]:
            kv = param.split("=", 1)
            if len(kv) != 2:
                continue
            token = kv[0].strip(" ")
            if token == "q":
                try:
                    entry.q = float(kv[1])
                except ValueError:
                    entry.q = 0.0
            else:
                entry.params[token] = kv[1].strip(" ")
        accepted.append(entry)
    accepted.sort(key=lambda a: (-a.q, a.type == "*", a.subtype == "*"))
    return accepted


def _negotiate(
    headers: Mapping[str, str] | None,
    default_scheme: EscapingScheme,
    include_openmetrics: bool,
) -> Format:
    escaping = f"; {ESCAPING_KEY}={default_scheme.value}"
    for accept in _parse_accept(_header(headers, HDR_ACCEPT)):
        requested = accept.params.get(ESCAPING_KEY, "")
        if requested in _KNOWN_SCHEMES:
            escaping = f"; {ESCAPING_KEY}={requested}"
        version = accept.params.get("version", "")
        media = accept.type + "/" + accept.subtype
        if media == PROTO_TYPE and accept.params.get("proto") == PROTO_PROTOCOL:
            proto_format = _PROTO_ENCODING_FORMATS.get(accept.params.get("encoding", ""))
            if proto_format is not None:
                return Format(proto_format + escaping)
        if accept.type == "text" and accept.subtype == "plain" and version in (TEXT_VERSION, ""):
            return Format(FMT_TEXT + escaping)
        if (
            include_openmetrics
            and media == OPENMETRICS_TYPE
            and version in (OPENMETRICS_VERSION_0_0_1, OPENMETRICS_VERSION_1_0_0, "")
        ):
            if version == OPENMETRICS_VERSION_1_0_0:
                return Format(FMT_OPENMETRICS_1_0_0 + escaping)
            return Format(FMT_OPENMETRICS_0_0_1 + escaping)
    return Format(FMT_TEXT + escaping)


def negotiate(
    headers: Mapping[str, str] | None,
    default_scheme: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
) -> Format:
    """The format chosen from an Accept header; never OpenMetrics, text by default."""
    return _negotiate(headers, default_scheme, include_openmetrics=False)


def negotiate_including_openmetrics(
    headers: Mapping[str, str] | None,
    default_scheme: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
) -> Format:
    """Like negotiate, but OpenMetrics may be chosen as well."""
    return _negotiate(headers, default_scheme, include_openmetrics=True)


class Encoder:
    """Writes metric families to a stream in one wire format.

    Close it (or use it as a context manager) when done: OpenMetrics needs a
    final "# EOF" line, the other formats write nothing on close.
    """

    def __init__(
        self,
        out: IO[Any],
        fmt: str,
        *,
        with_created_lines: bool = False,
        with_unit: bool = False,
        default_scheme: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
    ) -> None:
        self.out = out
        self.format = Format(fmt)
        self.format_type = self.format.format_type()
        if self.format_type == FormatType.UNKNOWN:
            raise ValueError(f"unknown format {str(fmt)!r}")
        self.escaping_scheme = self.format.to_escaping_scheme(default_scheme)
        self.with_created_lines = with_created_lines
        self.with_unit = with_unit

    def encode(self, family: MetricFamily) -> int:
        """Write one family; returns the number of bytes written."""
        kind = self.format_type
        if kind == FormatType.PROTO_DELIM:
            return write_delimited(self.out, family)
        escaped = escape_metric_family(family, self.escaping_scheme)
        if kind == FormatType.PROTO_COMPACT:
            return _write(self.out, format_text(escaped, compact=True) + "\n")
        if kind == FormatType.PROTO_TEXT:
            return _write(self.out, format_text(escaped, compact=False) + "\n")
        if kind == FormatType.TEXT_PLAIN:
            return metric_family_to_text(self.out, escaped)
        return metric_family_to_openmetrics(
            self.out,
            escaped,
            with_created_lines=self.with_created_lines,
            with_unit=self.with_unit,
        )

    def close(self) -> int:
        """Finish the output; returns the number of bytes written."""
        if self.format_type == FormatType.OPENMETRICS:
            return finalize_openmetrics(self.out)
        return 0

    def __enter__(self) -> Encoder:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def new_encoder(
    out: IO[Any],
    fmt: str,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
    default_scheme: EscapingScheme = DEFAULT_ESCAPING_SCHEME,
) -> Encoder:
    """An encoder for the given format; the OpenMetrics options apply only to it."""
    return Encoder(
        out,
        fmt,
        with_created_lines=with_created_lines,
        with_unit=with_unit,
        default_scheme=default_scheme,
    )