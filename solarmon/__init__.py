"""Solar telemetry ingestion, register decoding, and live distribution service."""

__version__ = "0.1.0"
