"""Resilience patterns for the text-generation collaborator

Circuit breaker, fallback strategies and Prometheus metrics.
"""

from pungpung.resilience.circuit_breaker import (
    TEXT_GENERATION_BREAKER,
    with_circuit_breaker,
)
from pungpung.resilience.fallback import execute_with_fallbacks, FallbackStrategy
from pungpung.resilience.metrics import (
    record_circuit_breaker_state,
    record_api_call,
    record_api_failure,
    record_fallback,
)

__all__ = [
    # Circuit Breakers
    "TEXT_GENERATION_BREAKER",
    "with_circuit_breaker",
    # Fallback
    "execute_with_fallbacks",
    "FallbackStrategy",
    # Metrics
    "record_circuit_breaker_state",
    "record_api_call",
    "record_api_failure",
    "record_fallback",
]
