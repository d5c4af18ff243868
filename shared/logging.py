"""
Shared logging configuration for the Blog API.

Log lines are JSON. Every line emitted while a request is in flight carries
its request id, method and path, so cache hits, misses and invalidations can
be traced back to the route that caused them.
"""

import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_route_var: ContextVar[Optional[str]] = ContextVar('request_route', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_component_context,
            add_correlation_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_component_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split "blog.cache.redis" style logger names into service and component."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        service, component = logger_name.split(".", 1)
        event_dict["service"] = service
        event_dict["component"] = component

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add request correlation fields to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    route = request_route_var.get()
    if route and "route" not in event_dict:
        event_dict["route"] = route

    user_id = user_id_var.get()
    if user_id:
        event_dict["user_id"] = user_id

    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_request_route(method: str, path: str):
    """Record the in-flight request as "METHOD /path"."""
    request_route_var.set(f"{method} {path}")


def set_user_context(user_id: Optional[str] = None):
    """Set user context in logging."""
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    request_route_var.set(None)
    user_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
