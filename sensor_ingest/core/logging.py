"""
Centralized Logging Setup

- Standardizes logging format for the ingest service
- One JSON object per line on stdout, ready for Loki
- Usage: from sensor_ingest.core.logging import get_logger
"""

import json
import logging
import sys
from datetime import datetime, timezone

from sensor_ingest.core.config import Config


class LokiJsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineNo": record.lineno,
        }
        if hasattr(record, "labels"):
            log_record["labels"] = record.labels
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


class _LabelFilter(logging.Filter):
    """Attach default labels to records that don't carry their own."""

    def __init__(self, labels: dict):
        super().__init__()
        self.labels = labels

    def filter(self, record):
        if hasattr(record, "labels"):
            record.labels = {**self.labels, **record.labels}
        else:
            record.labels = dict(self.labels)
        return True


def get_logger(name=None, level=None, labels=None):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(LokiJsonFormatter())
        logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(level or Config.LOG_LEVEL)
    if labels and not any(isinstance(f, _LabelFilter) for f in logger.filters):
        logger.addFilter(_LabelFilter(labels))
    return logger
