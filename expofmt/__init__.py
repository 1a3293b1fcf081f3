"""Writing metrics in text, OpenMetrics and protobuf exposition formats, and reading delimited protobuf."""

__version__ = "0.1.0"
__all__ = ["__version__"]