"""Logging setup: console line/JSON formatters and a background file mirror."""

import json
import logging
import queue
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

# Verbose trace sits below INFO, dry-run notices between INFO and WARNING
VERBOSE = 15
DRY = 25

STDOUT_HANDLER_NAME = "tempclear-console-stdout"
STDERR_HANDLER_NAME = "tempclear-console-stderr"
CONSOLE_HANDLER_NAMES = (STDOUT_HANDLER_NAME, STDERR_HANDLER_NAME)

logging.addLevelName(VERBOSE, "VERB")
logging.addLevelName(DRY, "DRY")


def _format_extra(record: logging.LogRecord) -> str:
    extra_fields = getattr(record, "extra_fields", None)
    if not extra_fields:
        return ""
    return " " + " ".join(f"{key}={value}" for key, value in extra_fields.items())


class LineFormatter(logging.Formatter):
    """
    Plain text formatter producing ``[LEVEL] message key=value ...``.

    With ``timestamps=True`` the line is prefixed with ``[<ISO timestamp>]``,
    which is the layout used for the mirrored log file.
    """

    def __init__(self, timestamps: bool = False):
        super().__init__()
        self.timestamps = timestamps

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created).astimezone().isoformat()

    def format(self, record: logging.LogRecord) -> str:
        line = f"[{record.levelname}] {record.getMessage()}{_format_extra(record)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        if self.timestamps:
            line = f"[{self.formatTime(record)}] {line}"
        return line


class JsonFormatter(logging.Formatter):
    """JSON log formatter for log collectors."""

    def format(self, record: logging.LogRecord) -> str:
        """Format LogRecord into JSON string."""
        log_obj: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add error information if present
        if record.exc_info:
            log_obj["error"] = self.formatException(record.exc_info)
            log_obj["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        # Add extra fields if any
        if hasattr(record, "extra_fields"):
            log_obj["extra_fields"] = record.extra_fields

        return json.dumps(log_obj, default=str)


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


class BackgroundFileHandler(logging.Handler):
    """
    Mirror log records to a file from a dedicated writer thread.

    Producers only enqueue, so a slow disk never stalls the cleanup. The writer
    drains the queue every ``poll_interval`` seconds. ``close()`` gives it at
    most ``drain_timeout`` seconds to flush what is left; records emitted after
    that are dropped.
    """

    def __init__(self, filename: str | Path, poll_interval: float = 0.1, drain_timeout: float = 2.0):
        super().__init__()
        path = Path(filename).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        self.path = path
        self.poll_interval = poll_interval
        self.drain_timeout = drain_timeout
        self._stream = open(path, "a", encoding="utf-8")
        self._queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
        self._stopping = threading.Event()
        self._closed = False
        self._writer = threading.Thread(target=self._drain_loop, name="tempclear-log-writer", daemon=True)
        self._writer.start()

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        self._queue.put(record)

    def _drain_loop(self) -> None:
        while not self._stopping.is_set():
            self._write_pending()
            self._stopping.wait(self.poll_interval)
        self._write_pending()

    def _write_pending(self) -> None:
        while True:
            try:
                record = self._queue.get_nowait()
            except queue.Empty:
                return

            self.acquire()
            try:
                if self._stream is None:
                    return
                self._stream.write(self.format(record) + "\n")
                self._stream.flush()
            except Exception:
                self.handleError(record)
            finally:
                self.release()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._stopping.set()
            self._writer.join(self.drain_timeout)

            self.acquire()
            try:
                if self._stream is not None:
                    self._stream.close()
                    self._stream = None
            finally:
                self.release()
        super().close()


def setup_logging(
    logger_name: str = "tempclear",
    verbose: bool = False,
    log_format: str = "text",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure console logging and the optional file mirror.

    Args:
        logger_name: Name of the logger
        verbose: Emit VERB trace lines when True
        log_format: Console format, "text" or "json"
        log_file: Path of a file that receives timestamped copies of every line

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(VERBOSE if verbose else logging.INFO)
    logger.propagate = False

    # Opened first so a bad path leaves the logger untouched
    file_handler = None
    if log_file:
        file_handler = BackgroundFileHandler(log_file)
        file_handler.setFormatter(LineFormatter(timestamps=True))

    # Only our own console handlers count as duplicates
    installed = {h.get_name() for h in logger.handlers}
    if not installed.intersection(CONSOLE_HANDLER_NAMES):
        formatter: logging.Formatter = JsonFormatter() if log_format == "json" else LineFormatter()

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.set_name(STDOUT_HANDLER_NAME)
        stdout_handler.addFilter(_MaxLevelFilter(logging.ERROR))
        stdout_handler.setFormatter(formatter)
        logger.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.set_name(STDERR_HANDLER_NAME)
        stderr_handler.setLevel(logging.ERROR)
        stderr_handler.setFormatter(formatter)
        logger.addHandler(stderr_handler)

    if file_handler is not None:
        logger.addHandler(file_handler)

    return logger


def shutdown_logging(logger: logging.Logger) -> None:
    """Flush, close and detach every handler of ``logger``."""
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)


def log_with_context(
    logger: logging.Logger, level: str, message: str, extra: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log message with additional context fields.

    Args:
        logger: Logger instance
        level: Level name (verb, info, dry, warning, error, ...)
        message: Log message
        extra: Additional context fields, rendered as key=value or JSON
    """
    if extra is None:
        extra = {}

    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int):
        raise ValueError(f"Unknown log level: {level}")
    logger.log(levelno, message, extra={"extra_fields": extra})
