"""
Structured logging configuration.

Every event is rendered as JSON with the application name and environment.
Request identifiers bound through ``structlog.contextvars`` are merged in, and
provider secrets that travel in payment metadata are masked before rendering.
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from payment_service.config import Settings, get_settings

EventDict = Dict[str, Any]

REDACTED = "[redacted]"
SECRET_KEYS = frozenset(
    {
        "access_token",
        "client_secret",
        "stripe_client_secret",
        "stripe_secret_key",
        "paypal_client_secret",
        "provider_token_id",
    }
)

# Libraries that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "stripe", "uvicorn.access")


def app_context(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Build a processor stamping the application name and environment."""

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def default_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    # Events outside a request carry a null correlation id.
    event_dict.setdefault("correlation_id", None)
    return event_dict


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if k in SECRET_KEYS and v else _mask(v) for k, v in value.items()
        }
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask provider credentials, including inside logged metadata mappings."""
    return _mask(event_dict)


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger for JSON output on stdout.

    Args:
        settings: Optional settings (defaults to the cached settings)
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            default_correlation_id,
            app_context(settings),
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Third-party records that bypass structlog are rendered as JSON as well.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )


def bind_correlation_id(correlation_id: str, user_id: str) -> None:
    """Bind request identifiers so every log line in this context carries them."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id, user_id=user_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
