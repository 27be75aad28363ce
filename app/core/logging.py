"""Logging setup driven by ``settings.log_level`` and ``settings.log_format``."""

import json
import logging
import sys
from datetime import UTC, datetime

from app.core.config import LogFormatEnum, Settings

SIMPLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED_ATTRS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(config: Settings) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; the previous handler is replaced.
    """
    handler = logging.StreamHandler(sys.stdout)
    if config.log_format == LogFormatEnum.json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_app_handler", False):
            root.removeHandler(existing)
    handler._app_handler = True
    root.addHandler(handler)
    root.setLevel(config.log_level.value)

    # Provider SDKs are chatty at INFO.
    for noisy in ("httpx", "chromadb", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if config.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=config.sentry_dsn,
            environment=config.environment.value,
            release=config.version,
        )
        logging.getLogger(__name__).info("Sentry error reporting enabled")
