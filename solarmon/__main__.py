"""
Process entrypoint: ``python -m solarmon``.

Installs the JSON log formatter on the root logger, then serves the API with
uvicorn on the configured host and port.

CHANGELOG:
- 2026-10-17: Initial creation
"""

import json
import logging
import sys
from datetime import UTC, datetime

import uvicorn

from solarmon.config import ServiceSettings


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO") -> None:
    """Route all log records to stderr as one JSON object per line."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def main() -> None:
    settings = ServiceSettings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "solarmon.api.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
