"""Logging setup: one stdout stream, JSON by default."""

import logging
import sys
from datetime import datetime
from pythonjsonlogger import jsonlogger

from notifier.config import settings

# Context fields stamped on scheduled-run records by get_logger()
RUN_CONTEXT_FIELDS = ("run_id", "trigger", "scan_kind")


class RunJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC timestamp and the run context when present."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        for field in RUN_CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value


def setup_logging(json_output: bool | None = None) -> logging.Logger:
    """Route all records to stdout at ``settings.log_level``."""
    if json_output is None:
        json_output = settings.log_json

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(RunJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """Merges its context into each record's extra."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**kwargs.get('extra', {}), **self.extra}
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """Logger carrying context fields, e.g. ``get_logger(__name__, run_id=...)``."""
    return LoggerAdapter(logging.getLogger(name), context)
