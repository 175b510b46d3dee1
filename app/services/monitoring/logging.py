"""
Structured JSON Logging with Correlation ID

Two loggers share stdout: structlog for the matching services (snake_case
events with keyword context) and stdlib logging for libraries and
infrastructure, formatted as JSON with the request correlation id.
"""

import logging
import os
import sys

import structlog
from asgi_correlation_id.context import correlation_id
from pythonjsonlogger import jsonlogger


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds correlation_id, service and environment."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = 'partner-matching-engine'
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def add_correlation_id(logger, method_name, event_dict):
    """structlog processor: same correlation id as the stdlib records."""
    event_dict.setdefault("correlation_id", correlation_id.get() or "none")
    return event_dict


def configure_structlog():
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            add_correlation_id,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    )


def setup_logging(level: int = logging.INFO):
    """
    Configure JSON logging to stdout for both stdlib logging and structlog.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)
    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    configure_structlog()
    return handler
