"""
Circuit Breaker for the Pattern Oracle

Opens after consecutive Claude API failures so a struggling API is not
hammered by every learning batch; pybreaker retries after the reset timeout.
"""

import functools
import logging
from typing import Optional

import pybreaker
from pybreaker import CircuitBreakerError

from app.config import settings

logger = logging.getLogger(__name__)


class CircuitBreakerLogListener(pybreaker.CircuitBreakerListener):
    """Logs every state change; an opening breaker is also reported to Sentry."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: pybreaker.CircuitBreakerState, new_state: pybreaker.CircuitBreakerState):
        logger.warning(
            f"Circuit breaker state change: {cb.name} transitioned from {old_state.name} to {new_state.name}",
            extra={
                "circuit_breaker": cb.name,
                "old_state": old_state.name,
                "new_state": new_state.name,
                "fail_count": cb.fail_counter,
            }
        )
        if new_state.name == pybreaker.STATE_OPEN:
            from app.services.monitoring.error_tracking import capture_message
            capture_message(f"Circuit breaker opened: {cb.name}", level="error")


_claude_breaker: Optional[pybreaker.CircuitBreaker] = None


def get_breaker(service_name: str) -> pybreaker.CircuitBreaker:
    """
    Get the circuit breaker for a service, created on first access.

    Raises:
        ValueError: If service_name is not recognized
    """
    global _claude_breaker

    if service_name != "claude":
        raise ValueError(f"Unknown service name: {service_name}. Must be 'claude'")

    if _claude_breaker is None:
        _claude_breaker = pybreaker.CircuitBreaker(
            name="claude_api",
            fail_max=settings.circuit_breaker_fail_max,
            reset_timeout=settings.circuit_breaker_reset_timeout,
            listeners=[CircuitBreakerLogListener()],
        )
        logger.info("Initialized Claude API circuit breaker")
    return _claude_breaker


def get_claude_breaker() -> pybreaker.CircuitBreaker:
    return get_breaker("claude")


def with_circuit_breaker(service_name: str):
    """
    Decorator to wrap a function with circuit breaker protection.

    Raises:
        CircuitBreakerError: If circuit is open (service unavailable)
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return get_breaker(service_name).call(func, *args, **kwargs)
        return wrapper
    return decorator


__all__ = [
    "CircuitBreakerLogListener",
    "get_breaker",
    "get_claude_breaker",
    "with_circuit_breaker",
    "CircuitBreakerError",
]
