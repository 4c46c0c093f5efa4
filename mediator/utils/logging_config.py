"""Structured logging configuration for the mediator."""

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

_CONTEXT_FIELDS = ("bucket", "object_key", "table_name")

_event_context = threading.local()
_factory_lock = threading.Lock()
_factory_installed = False


class JSONFormatter(logging.Formatter):
    """Log formatter that outputs JSON-structured log lines."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Ingestion context, when the record was emitted inside one
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def setup_logging(level: str = None):
    """Configure structured logging for the mediator process.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
            Defaults to the LOG_LEVEL env var or INFO.
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter())

    # Avoid adding duplicate handlers
    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        root_logger.addHandler(console_handler)

    # botocore and urllib3 are chatty at DEBUG
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str, bucket: str = None, object_key: str = None) -> logging.Logger:
    """Get a logger with optional bucket/object context.

    Args:
        name: Logger name (typically __name__).
        bucket: Optional bucket name for context.
        object_key: Optional object key for context.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if bucket or object_key:
        adapter_extra = {}
        if bucket:
            adapter_extra["bucket"] = bucket
        if object_key:
            adapter_extra["object_key"] = object_key
        return logging.LoggerAdapter(logger, adapter_extra)

    return logger


def _install_record_factory():
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            for name, value in getattr(_event_context, "fields", {}).items():
                setattr(record, name, value)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


@contextmanager
def event_logging_context(bucket: str, object_key: str, table_name: str = None):
    """Context manager that tags log records with the event being ingested.

    The context is thread-local: each ingestion worker only tags the
    records it emits itself.

    Args:
        bucket: Bucket the object arrived in.
        object_key: Key of the object being ingested.
        table_name: Target table, when already known.

    Usage:
        with event_logging_context("sales", "orders.csv"):
            log.info("This message includes bucket/object context")
    """
    _install_record_factory()

    fields = {"bucket": bucket, "object_key": object_key}
    if table_name:
        fields["table_name"] = table_name

    previous = getattr(_event_context, "fields", {})
    _event_context.fields = fields
    try:
        yield
    finally:
        _event_context.fields = previous
