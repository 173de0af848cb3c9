from __future__ import annotations

import logging

from retort.core.security import redact_secrets

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class RedactionFilter(logging.Filter):
    """Masks API keys in the message and its arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_secrets(value) if isinstance(value, str) else value for value in record.args
            )
        return True


def setup_logging(level: str) -> None:
    """Send log records to stderr at ``level`` (WARNING when unrecognized)."""

    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(level=numeric, format=LOG_FORMAT)

    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(item, RedactionFilter) for item in handler.filters):
            handler.addFilter(RedactionFilter())
