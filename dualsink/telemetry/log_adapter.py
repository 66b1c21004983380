"""
Structured-log sink adapter.

This module writes one JSON object per line for every telemetry event
that passes the configured level. Correlation values are carried as
attributes of the record; the caller's message text is never modified.

Each record contains:
- timestamp: ISO 8601 formatted UTC timestamp
- level: debug, info, warn, error or critical
- message: The caller's message, unmodified
- logger, module, function, line: Origin of the call
- every field supplied by the caller
- ServiceName, and OperationID when the call has a parent operation
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, TextIO

from dualsink.errors.exceptions import invalid_log_level, log_sink_unavailable
from dualsink.telemetry.carrier import Correlation
from dualsink.telemetry.fields import Field
from dualsink.telemetry.severity import Severity


SERVICE_NAME_KEY = "ServiceName"
OPERATION_ID_KEY = "OperationID"

# Keys owned by the formatter; colliding fields are renamed to field.<key>
RESERVED_KEYS = frozenset({
    "timestamp", "level", "message", "logger",
    "module", "function", "line", "exception",
})

LEVEL_NAMES: Dict[int, str] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "critical",
}

CONFIG_LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

SEVERITY_LEVELS: Dict[Severity, int] = {
    Severity.VERBOSE: logging.DEBUG,
    Severity.INFORMATION: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}

# logger.log -> StructuredLogAdapter.emit -> facade method -> caller
_BASE_STACKLEVEL = 3


class JSONFormatter(logging.Formatter):
    """
    Log formatter that outputs one JSON object per record.

    Attributes are read from the 'extra_data' attribute on the log
    record, in the order the adapter placed them.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record as a JSON string.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted string containing the log entry
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.module:
            log_data["module"] = record.module
        if record.funcName and record.funcName != "<module>":
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key, value in extra_data.items():
                if key in RESERVED_KEYS:
                    key = f"field.{key}"
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def resolve_log_level(log_level: str) -> int:
    """
    Map a configured log level name to a logging level.

    Raises:
        ConfigurationError: If the name is not a supported level.
    """
    try:
        return CONFIG_LEVELS[log_level.strip().lower()]
    except (KeyError, AttributeError):
        raise invalid_log_level(str(log_level)) from None


def _build_handler(output: str, stream: Optional[TextIO]) -> logging.Handler:
    if stream is not None:
        return logging.StreamHandler(stream)
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    try:
        return logging.FileHandler(output, encoding="utf-8")
    except OSError as e:
        raise log_sink_unavailable(output, str(e)) from e


class StructuredLogAdapter:
    """
    Writes telemetry events to a private JSON logger.

    The logger is not registered with the logging manager and does not
    propagate, so each adapter owns its handler and the host's logging
    configuration is left untouched. Write failures go through the
    standard Handler.handleError path and are never raised to callers.
    """

    def __init__(
        self,
        log_level: str,
        output: str = "stdout",
        name: str = "dualsink.telemetry",
        caller_skip: int = 0,
        stream: Optional[TextIO] = None
    ):
        """
        Build the adapter and open its output.

        Args:
            log_level: Minimum level (debug, info, warn, error)
            output: stdout, stderr, or a file path; ignored when stream is given
            name: Logger name reported in each record
            caller_skip: Extra frames to skip when reporting the call origin
            stream: Explicit text stream to write to

        Raises:
            ConfigurationError: If the level is unknown or the output cannot be opened.
        """
        level = resolve_log_level(log_level)
        handler = _build_handler(output, stream)
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter())

        self._logger = logging.Logger(name, level)
        self._logger.propagate = False
        self._logger.addHandler(handler)
        self._handler = handler
        self._stacklevel = _BASE_STACKLEVEL + caller_skip

    def is_enabled_for(self, severity: Severity) -> bool:
        return self._logger.isEnabledFor(SEVERITY_LEVELS[severity])

    def emit(
        self,
        severity: Severity,
        message: str,
        fields: Iterable[Field],
        correlation: Correlation,
        extra: Optional[Dict[str, Any]] = None,
        stacklevel: int = 0
    ) -> None:
        """
        Write one record.

        Args:
            severity: Abstract severity of the event
            message: Caller message, written unmodified
            fields: Caller attributes
            correlation: Correlation values for this call
            extra: Adapter-specific attributes (e.g. request or dependency details)
            stacklevel: Frames between the facade method and its caller,
                beyond the facade method itself
        """
        level = SEVERITY_LEVELS[severity]
        if not self._logger.isEnabledFor(level):
            return

        extra_data: Dict[str, Any] = {}
        for f in fields:
            extra_data[f.key] = f.to_log_value()
        if extra:
            extra_data.update(extra)

        # Correlation attributes are written last so they win over same-named fields
        extra_data[SERVICE_NAME_KEY] = correlation.service_name
        if correlation.operation_id:
            extra_data[OPERATION_ID_KEY] = correlation.operation_id

        self._logger.log(
            level,
            message,
            extra={"extra_data": extra_data},
            stacklevel=self._stacklevel + stacklevel
        )

    def flush(self) -> None:
        self._handler.flush()

    def close(self) -> None:
        self._handler.flush()
        self._logger.removeHandler(self._handler)
        self._handler.close()
