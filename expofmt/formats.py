"""Content types of the exposition formats and their classification."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping

from .escaping import (
    DEFAULT_ESCAPING_SCHEME,
    ESCAPING_KEY,
    EscapingScheme,
)
from .escaping import to_escaping_scheme as _parse_escaping_scheme

TEXT_VERSION = "0.0.4"
PROTO_TYPE = "application/vnd.google.protobuf"
PROTO_PROTOCOL = "io.prometheus.client.MetricFamily"
PROTO_FMT = PROTO_TYPE + "; proto=" + PROTO_PROTOCOL + ";"
OPENMETRICS_TYPE = "application/openmetrics-text"
OPENMETRICS_VERSION_0_0_1 = "0.0.1"
OPENMETRICS_VERSION_1_0_0 = "1.0.0"

HDR_CONTENT_TYPE = "Content-Type"
HDR_ACCEPT = "Accept"


class FormatType(enum.IntEnum):
    """Overall category of a format string."""

    UNKNOWN = 0
    PROTO_COMPACT = 1
    PROTO_DELIM = 2
    PROTO_TEXT = 3
    TEXT_PLAIN = 4
    OPENMETRICS = 5


_PROTO_ENCODINGS = {
    "delimited": FormatType.PROTO_DELIM,
    "text": FormatType.PROTO_TEXT,
    "compact-text": FormatType.PROTO_COMPACT,
}


class Format(str):
    """A content type string naming a wire format."""

    def format_type(self) -> FormatType:
        """Deduce the overall format type."""
        toks = self.split(";")
        params: dict[str, str] = {}
        for tok in toks[1:]:
            args = tok.split("=")
            if len(args) != 2:
                continue
            params[args[0].strip()] = args[1].strip()

        head = toks[0].strip()
        if head == PROTO_TYPE:
            if params.get("proto") != PROTO_PROTOCOL:
                return FormatType.UNKNOWN
            return _PROTO_ENCODINGS.get(params.get("encoding", ""), FormatType.UNKNOWN)
        if head == OPENMETRICS_TYPE:
            if params.get("charset") != "utf-8":
                return FormatType.UNKNOWN
            return FormatType.OPENMETRICS
        if head == "text/plain":
            version = params.get("version")
            if version is None or version == TEXT_VERSION:
                return FormatType.TEXT_PLAIN
            return FormatType.UNKNOWN
        return FormatType.UNKNOWN

    def to_escaping_scheme(
        self, default: EscapingScheme = DEFAULT_ESCAPING_SCHEME
    ) -> EscapingScheme:
        """The scheme named by an escaping term, or the default if absent or invalid."""
        for part in self.split(";"):
            toks = part.split("=")
            if len(toks) != 2:
                continue
            key, value = toks[0].strip(), toks[1].strip()
            if key == ESCAPING_KEY:
                try:
                    return _parse_escaping_scheme(value)
                except ValueError:
                    return default
        return default

    def with_escaping_scheme(self, scheme: EscapingScheme) -> Format:
        """A copy with any escaping terms replaced by one for the given scheme."""
        terms = []
        for part in self.split(";"):
            toks = part.split("=")
            if len(toks) != 2:
                trimmed = part.strip()
                if trimmed:
                    terms.append(trimmed)
                continue
            if toks[0].strip() != ESCAPING_KEY:
                terms.append(part.strip())
        terms.append(f"{ESCAPING_KEY}={scheme.value}")
        return Format("; ".join(terms))


FMT_UNKNOWN = Format("<unknown>")
FMT_TEXT = Format("text/plain; version=" + TEXT_VERSION + "; charset=utf-8")
FMT_PROTO_DELIM = Format(PROTO_FMT + " encoding=delimited")
FMT_PROTO_TEXT = Format(PROTO_FMT + " encoding=text")
FMT_PROTO_COMPACT = Format(PROTO_FMT + " encoding=compact-text")
FMT_OPENMETRICS_1_0_0 = Format(
    OPENMETRICS_TYPE + "; version=" + OPENMETRICS_VERSION_1_0_0 + "; charset=utf-8"
)
FMT_OPENMETRICS_0_0_1 = Format(
    OPENMETRICS_TYPE + "; version=" + OPENMETRICS_VERSION_0_0_1 + "; charset=utf-8"
)

_FORMATS_BY_TYPE = {
    FormatType.PROTO_COMPACT: FMT_PROTO_COMPACT,
    FormatType.PROTO_DELIM: FMT_PROTO_DELIM,
    FormatType.PROTO_TEXT: FMT_PROTO_TEXT,
    FormatType.TEXT_PLAIN: FMT_TEXT,
    FormatType.OPENMETRICS: FMT_OPENMETRICS_1_0_0,
}


def new_format(format_type: FormatType) -> Format:
    """The format for a type, in its latest version."""
    return _FORMATS_BY_TYPE.get(format_type, FMT_UNKNOWN)


def new_openmetrics_format(version: str) -> Format:
    """The OpenMetrics format of the given version."""
    if version == OPENMETRICS_VERSION_0_0_1:
        return FMT_OPENMETRICS_0_0_1
    if version == OPENMETRICS_VERSION_1_0_0:
        return FMT_OPENMETRICS_1_0_0
    raise ValueError("unknown open metrics version string")


_MIME_WORD = r"[!#$%&'*+\-.^_`{|}~0-9A-Za-z]+"
_MEDIA_TYPE = re.compile(rf"{_MIME_WORD}(?:/{_MIME_WORD})?")
_PARAM = re.compile(rf';\s*({_MIME_WORD})\s*=\s*("(?:[^"\\]|\\.)*"|{_MIME_WORD})')
_QUOTED_SPECIAL = re.compile(r'\\([()<>@,;:\\"/\[\]?=])')


def _parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    base = value.split(";", 1)[0]
    media_type = base.strip().lower()
    if not _MEDIA_TYPE.fullmatch(media_type):
        raise ValueError(f"invalid media type {value!r}")
    params: dict[str, str] = {}
    rest = value[len(base):]
    while rest:
        rest = rest.lstrip()
        if not rest:
            break
        match = _PARAM.match(rest)
        if match is None:
            if rest.strip() == ";":
                break
            raise ValueError(f"invalid media parameter in {value!r}")
        key = match.group(1).lower()
        raw = match.group(2)
        if raw.startswith('"'):
            raw = _QUOTED_SPECIAL.sub(r"\1", raw[1:-1])
        if key in params:
            raise ValueError(f"duplicate parameter {key!r}")
        params[key] = raw
        rest = rest[match.end():]
    return media_type, params


def _header(headers: Mapping[str, str] | None, name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def response_format(headers: Mapping[str, str] | None) -> Format:
    """The format named by a response's Content-Type header, or FMT_UNKNOWN."""
    try:
        media_type, params = _parse_media_type(_header(headers, HDR_CONTENT_TYPE))
    except ValueError:
        return FMT_UNKNOWN

    if media_type == PROTO_TYPE:
        if params.get("proto", PROTO_PROTOCOL) != PROTO_PROTOCOL:
            return FMT_UNKNOWN
        if params.get("encoding", "delimited") != "delimited":
            return FMT_UNKNOWN
        return FMT_PROTO_DELIM
    if media_type == "text/plain":
        if params.get("version", TEXT_VERSION) != TEXT_VERSION:
            return FMT_UNKNOWN
        return FMT_TEXT
    return FMT_UNKNOWN