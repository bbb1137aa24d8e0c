# libs/py_common/logging.py

import logging
import sys
from typing import Optional

import structlog


def _service_tagger(service: Optional[str]):
    def add_service(logger, method_name, event_dict):
        if service:
            event_dict.setdefault("service", service)
        return event_dict
    return add_service


def setup_logging(log_level: str = "INFO", service: Optional[str] = None, json_logs: bool = True):
    """Configures structlog over stdlib logging.

    JSON lines in deployed environments; `json_logs=False` switches to the
    console renderer for local development. Every event carries `service` when
    given, plus whatever the request middleware bound to the context.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level.upper(),
        force=True,
    )
    for noisy in ("urllib3", "celery.redirected"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _service_tagger(service),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).debug("structlog_configured", level=log_level.upper(), service=service)
