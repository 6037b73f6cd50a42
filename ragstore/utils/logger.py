import logging
import os
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from queue import Queue
from typing import Any, Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from ragstore.config import config
from ragstore.utils.logging_context import get_current_trace_id


def _ensure_log_dir(path: str):
    log_dir = os.path.dirname(path) or "."
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)


def _cfg_logging(key: str, default: Any = None) -> Any:
    v = config.get(f"logging.{key}")
    return default if v is None else v


class TraceIDFilter(logging.Filter):
    """Attach the current trace id to every record."""

    def filter(self, record):
        record.trace_id = get_current_trace_id() or ""
        return True


def _add_trace_id(logger, method_name, event_dict):
    trace = get_current_trace_id()
    if trace:
        event_dict["trace_id"] = trace
    return event_dict


class Logger:
    """Structured logger wrapper with trace-id injection.

    Configures stdlib logging (JSON via python-json-logger, optional file
    rotation and queueing) and routes structlog through it.
    """

    def __init__(self):
        self.logger = None
        self._handler: Optional[logging.Handler] = None
        self._queue_handler: Optional[QueueHandler] = None
        self._listener: Optional[QueueListener] = None
        self._setup_logging()

    def _is_json(self) -> bool:
        return _cfg_logging("format", "json") == "json"

    def _get_formatter(self):
        if self._is_json():
            return JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s")
        return logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    def _setup_handler(self) -> logging.Handler:
        path = _cfg_logging("log_file")
        if path:
            path = str(path)
            _ensure_log_dir(path)
            handler = RotatingFileHandler(
                path,
                maxBytes=int(_cfg_logging("rotate_size", 100 * 1024 * 1024)),
                backupCount=int(_cfg_logging("backup_count", 10)),
                encoding="utf-8",
            )
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(self._get_formatter())
        handler.addFilter(TraceIDFilter())
        return handler

    def _configure_structlog(self):
        renderer = (
            structlog.stdlib.render_to_log_kwargs
            if self._is_json()
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                _add_trace_id,
                renderer,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )
        self.logger = structlog.get_logger("ragstore")

    def _setup_logging(self):
        lib_logger = logging.getLogger("ragstore")
        lib_logger.setLevel(getattr(logging, str(_cfg_logging("log_level", "INFO")).upper(), logging.INFO))
        lib_logger.propagate = False

        self._handler = self._setup_handler()
        if bool(_cfg_logging("enable_queue", False)):
            queue: Queue = Queue(-1)
            self._queue_handler = QueueHandler(queue)
            lib_logger.addHandler(self._queue_handler)
            self._listener = QueueListener(queue, self._handler, respect_handler_level=True)
            self._listener.start()
        else:
            lib_logger.addHandler(self._handler)

        self._configure_structlog()

    def reconfigure(self):
        """Drop current handlers and rebuild them from config."""
        self.shutdown()
        lib_logger = logging.getLogger("ragstore")
        for h in (self._queue_handler, self._handler):
            if h is not None:
                lib_logger.removeHandler(h)
                h.close()
        self._queue_handler = None
        self._handler = None
        self._setup_logging()

    def get_logger(self):
        return self.logger

    def shutdown(self):
        if self._listener:
            self._listener.stop()
            self._listener = None


# Global logger instance
logger_instance = Logger()
logger = logger_instance.get_logger()
