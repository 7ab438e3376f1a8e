"""Logging setup: event-style records with ``extra=`` context rendered as key=value."""
from __future__ import annotations

import logging
import sys

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = {k: v for k, v in record.__dict__.items() if k not in _RESERVED}
        if not context:
            return base
        pairs = " ".join(f"{k}={v!r}" for k, v in sorted(context.items()))
        return f"{base} {pairs}"


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        KeyValueFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
