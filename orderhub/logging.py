"""
structlog setup shared by the API process and the test suite.

A JSON entry looks like:
{
    "event": "order.status_changed",
    "service": "orderhub",
    "correlation_id": "6f1c...",
    "ts": "2024-05-10T15:30:00.123456Z",
    "level": "info",
    "module": "orderhub.services.ingestion",
    "function": "_commit",
    "line": 118,
    "order_id": "...",
    "status": "cooking"
}
"""
import structlog
import logging
import orjson
from typing import Any


def add_service_name(service_name: str):
    """Build a processor stamping the service name on every entry."""
    def processor(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict["service"] = service_name
        return event_dict
    return processor


def add_module_info(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add module, function, and line number to log entries."""
    frame = structlog._frames._find_first_app_frame_and_name(additional_ignores=[__name__])[0]
    if frame:
        event_dict["module"] = frame.f_globals.get("__name__", "unknown")
        event_dict["function"] = frame.f_code.co_name
        event_dict["line"] = frame.f_lineno
    return event_dict


def setup_logging(json_output: bool = True, service_name: str = "orderhub", level: str = "INFO"):
    """
    Configure structlog and the stdlib root logger.

    Args:
        json_output: orjson-rendered lines when True, colored console output otherwise
        service_name: Name stamped on every entry
        level: Minimum level name, e.g. "DEBUG"
    """
    min_level = logging.getLevelName(level.upper())
    if not isinstance(min_level, int):
        min_level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        add_service_name(service_name),
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        add_module_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer(serializer=orjson.dumps))
        logger_factory = structlog.BytesLoggerFactory()
    else:
        processors.append(structlog.dev.ConsoleRenderer())
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=min_level)

    # uvicorn's own handlers would print every line twice
    logging.getLogger("uvicorn.error").handlers = []
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
