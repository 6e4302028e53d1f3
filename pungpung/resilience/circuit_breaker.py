"""Circuit breaker for the text-generation service

Stops calling the text generator while it is failing so level-ups and tips
fall back to static text immediately instead of waiting on timeouts.

State Machine:
    CLOSED (normal) -> OPEN (failing fast) -> HALF_OPEN (testing) -> CLOSED/OPEN
"""

import pybreaker
import logging
from typing import Callable, Any, TypeVar
from functools import wraps

from pungpung.resilience.metrics import record_api_failure, record_circuit_breaker_state

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener to log circuit breaker state changes and emit metrics"""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        logger.warning(
            f"[CIRCUIT_BREAKER] {cb.name}: {old_state.name} -> {new_state.name}"
        )
        record_circuit_breaker_state(cb.name, new_state.name.lower())

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.error(
            f"[CIRCUIT_BREAKER] {cb.name} recorded failure: {type(exc).__name__}: {exc}"
        )
        record_api_failure(cb.name, type(exc).__name__)

    def success(self, cb: pybreaker.CircuitBreaker) -> None:
        logger.debug(f"[CIRCUIT_BREAKER] {cb.name} recorded success")


# 5 failures opens the circuit, 60s before HALF_OPEN
TEXT_GENERATION_BREAKER = pybreaker.CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    name="text_generation",
    listeners=[CircuitBreakerListener()]
)


def with_circuit_breaker(breaker: pybreaker.CircuitBreaker) -> Callable:
    """
    Decorator to wrap async functions with circuit breaker protection.

    When the circuit is OPEN, calls fail immediately with CircuitBreakerError
    instead of calling the underlying function.

    Example:
        @with_circuit_breaker(TEXT_GENERATION_BREAKER)
        async def call_text_api():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                with breaker.calling():
                    return await func(*args, **kwargs)
            except pybreaker.CircuitBreakerError:
                logger.warning(
                    f"[CIRCUIT_BREAKER] {breaker.name} is OPEN - failing fast"
                )
                raise
        return wrapper
    return decorator
