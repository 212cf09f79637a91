"""
Logging setup for dbvc entry points.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
and formatters are installed here, once, by whoever runs the process.
"""

import logging
import os
import socket
import sys
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(jsonlogger.JsonFormatter):
    """Structured JSON formatter for logs."""

    def __init__(self, service_name: str = "dbvc"):
        self.service_name = service_name
        self.hostname = socket.gethostname()

        format_string = "%(asctime)s %(name)s %(levelname)s %(funcName)s %(lineno)d %(message)s"

        super().__init__(
            format_string,
            rename_fields={
                "asctime": "timestamp",
                "name": "logger_name",
                "levelname": "level",
                "funcName": "function",
                "lineno": "line",
            },
        )

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["service"] = self.service_name
        log_record["hostname"] = self.hostname
        log_record["environment"] = os.getenv("ENVIRONMENT", "dev")

        for attr in ("database_id", "migration_id"):
            value = getattr(record, attr, None)
            if value:
                log_record[attr] = value

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


def configure_logging(verbose: bool = False, json_logs: bool = False, stream=None) -> None:
    """
    Install a single root handler.

    Args:
        verbose: Log at DEBUG instead of INFO
        json_logs: Emit one JSON object per line instead of plain text
        stream: Destination, stderr by default
    """
    level = logging.DEBUG if verbose else logging.INFO
    if not json_logs:
        logging.basicConfig(level=level, format=TEXT_FORMAT, stream=stream or sys.stderr, force=True)
        return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
