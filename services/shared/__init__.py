"""Shared infrastructure for the booking service: config, logging, events, notifications."""

from .config import ServiceConfig, load_service_config
from .health import create_health_router
from .logging import RequestContextLogMiddleware, configure_logging
from .messaging import EventPublisher
from .notifications import NotificationClient
from .timeutils import ensure_utc, start_of_day, utcnow

__all__ = [
    "ServiceConfig",
    "load_service_config",
    "create_health_router",
    "RequestContextLogMiddleware",
    "configure_logging",
    "EventPublisher",
    "NotificationClient",
    "ensure_utc",
    "start_of_day",
    "utcnow",
]
