"""Name validation and escaping of metric and label names."""

from __future__ import annotations

import dataclasses
import enum
import re

from .model import METRIC_NAME_LABEL, LabelPair, Metric, MetricFamily

ESCAPING_KEY = "escaping"

_LEGACY_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LEGACY_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class EscapingScheme(enum.Enum):
    """How names that are not legacy-valid are rewritten."""

    NO_ESCAPING = "allow-utf-8"
    UNDERSCORE_ESCAPING = "underscores"
    DOTS_ESCAPING = "dots"
    VALUE_ENCODING_ESCAPING = "values"

    def __str__(self) -> str:
        return self.value


DEFAULT_ESCAPING_SCHEME = EscapingScheme.UNDERSCORE_ESCAPING


class ValidationScheme(enum.Enum):
    """Which characters metric and label names may contain."""

    LEGACY = "legacy"
    UTF8 = "utf8"


def _is_valid_utf8(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _is_surrogate(ch: str) -> bool:
    return 0xD800 <= ord(ch) <= 0xDFFF


def is_valid_legacy_metric_name(name: str) -> bool:
    """True if the name matches the traditional metric name pattern."""
    return _LEGACY_METRIC_NAME.fullmatch(name) is not None


def is_valid_metric_name(name: str, scheme: ValidationScheme = ValidationScheme.UTF8) -> bool:
    """True if the name is a valid metric name under the given scheme."""
    if scheme is ValidationScheme.LEGACY:
        return is_valid_legacy_metric_name(name)
    return bool(name) and _is_valid_utf8(name)


def is_valid_label_name(name: str, scheme: ValidationScheme = ValidationScheme.UTF8) -> bool:
    """True if the name is a valid label name under the given scheme."""
    if not name:
        return False
    if scheme is ValidationScheme.LEGACY:
        return _LEGACY_LABEL_NAME.fullmatch(name) is not None
    return _is_valid_utf8(name)


def is_valid_label_value(value: str) -> bool:
    """True if the label value is valid UTF-8."""
    return _is_valid_utf8(value)


def to_escaping_scheme(value: str) -> EscapingScheme:
    """Parse the value of an escaping parameter."""
    if value == "":
        raise ValueError("got empty string instead of escaping scheme")
    try:
        return EscapingScheme(value)
    except ValueError:
        raise ValueError(f"unknown format scheme {value}") from None


def _is_valid_legacy_char(ch: str, first: bool) -> bool:
    return (
        "a" <= ch <= "z"
        or "A" <= ch <= "Z"
        or ch in "_:"
        or ("0" <= ch <= "9" and not first)
    )


def escape_name(name: str, scheme: EscapingScheme) -> str:
    """Rewrite a name so that it is legacy-valid under the given scheme."""
    if not name or scheme is EscapingScheme.NO_ESCAPING:
        return name
    if scheme is EscapingScheme.UNDERSCORE_ESCAPING:
        if is_valid_legacy_metric_name(name):
            return name
        return "".join(
            ch if _is_valid_legacy_char(ch, i == 0) else "_" for i, ch in enumerate(name)
        )
    if scheme is EscapingScheme.DOTS_ESCAPING:
        parts = []
        for i, ch in enumerate(name):
            if ch == "_":
                parts.append("__")
            elif ch == ".":
                parts.append("_dot_")
            elif _is_valid_legacy_char(ch, i == 0):
                parts.append(ch)
            else:
                parts.append("__")
        return "".join(parts)
    if scheme is EscapingScheme.VALUE_ENCODING_ESCAPING:
        if is_valid_legacy_metric_name(name):
            return name
        parts = ["U__"]
        for i, ch in enumerate(name):
            if ch == "_":
                parts.append("__")
            elif _is_valid_legacy_char(ch, i == 0):
                parts.append(ch)
            elif _is_surrogate(ch):
                parts.append("_FFFD_")
            else:
                parts.append(f"_{ord(ch):x}_")
        return "".join(parts)
    raise ValueError(f"invalid escaping scheme {scheme!r}")


def _metric_needs_escaping(metric: Metric) -> bool:
    for label in metric.labels:
        if label.name == METRIC_NAME_LABEL and not is_valid_legacy_metric_name(label.value):
            return True
        if not is_valid_legacy_metric_name(label.name):
            return True
    return False


def _escape_label(label: LabelPair, scheme: EscapingScheme) -> LabelPair:
    if label.name == METRIC_NAME_LABEL:
        if is_valid_legacy_metric_name(label.value):
            return label
        return LabelPair(METRIC_NAME_LABEL, escape_name(label.value, scheme))
    if is_valid_legacy_metric_name(label.name):
        return label
    return LabelPair(escape_name(label.name, scheme), label.value)


def escape_metric_family(family: MetricFamily, scheme: EscapingScheme) -> MetricFamily:
    """Return a family whose metric and label names are escaped; the input is left untouched."""
    if scheme is EscapingScheme.NO_ESCAPING:
        return family
    name = family.name
    if not is_valid_legacy_metric_name(name):
        name = escape_name(name, scheme)
    metrics = [
        dataclasses.replace(
            metric, labels=[_escape_label(label, scheme) for label in metric.labels]
        )
        if _metric_needs_escaping(metric)
        else metric
        for metric in family.metrics
    ]
    return dataclasses.replace(family, name=name, metrics=metrics)