import logging
import os
import sys

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _service_tag(service_name):
    def add_service(logger, method_name, event_dict):
        event_dict["service"] = service_name
        return event_dict
    return add_service


def setup_logging(service_name="gateway_service"):
    """Route structlog events through stdlib logging as JSON lines on stdout."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, LOG_LEVEL, logging.INFO))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _service_tag(service_name),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
