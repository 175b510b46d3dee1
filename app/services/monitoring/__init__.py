"""
Monitoring Module
Structured logging, the oracle circuit breaker and Sentry error tracking
"""

from app.services.monitoring.logging import setup_logging, configure_structlog, CorrelationJsonFormatter
from app.services.monitoring.circuit_breakers import (
    get_claude_breaker,
    with_circuit_breaker,
    CircuitBreakerError,
    CircuitBreakerLogListener,
)
from app.services.monitoring.error_tracking import init_sentry, capture_exception

__all__ = [
    "setup_logging",
    "configure_structlog",
    "CorrelationJsonFormatter",
    "get_claude_breaker",
    "with_circuit_breaker",
    "CircuitBreakerError",
    "CircuitBreakerLogListener",
    "init_sentry",
    "capture_exception",
]
