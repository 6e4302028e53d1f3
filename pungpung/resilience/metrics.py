"""Prometheus metrics for the progress engine

Covers the text-generation collaborator (breaker state, calls, fallbacks) and
the XP economy (awards by source, like toggles, level-ups, mission sends).
Exposed at /metrics for scraping by Prometheus.
"""

import logging
from prometheus_client import Counter, Histogram, Enum

logger = logging.getLogger(__name__)

# Circuit breaker state
# Values: closed, open, half_open
circuit_breaker_state = Enum(
    'pungpung_circuit_breaker_state',
    'Current state of circuit breaker',
    ['api'],
    states=['closed', 'open', 'half_open']
)

# Labels: api (text_generation), status (success/failure)
api_calls_total = Counter(
    'pungpung_api_calls_total',
    'Total number of external API calls',
    ['api', 'status']
)

api_call_duration = Histogram(
    'pungpung_api_call_duration_seconds',
    'Duration of external API calls in seconds',
    ['api'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float('inf'))
)

# Labels: api, error_type (TimeoutException/RateLimitError/etc)
api_failures_total = Counter(
    'pungpung_api_failures_total',
    'Total number of external API failures',
    ['api', 'error_type']
)

# Labels: primary_api, fallback_strategy, status (success/failure)
fallback_executions_total = Counter(
    'pungpung_fallback_executions_total',
    'Total number of fallback strategy executions',
    ['primary_api', 'fallback_strategy', 'status']
)

# Labels: source (goal/like/mission)
xp_awarded_total = Counter(
    'pungpung_xp_awarded_total',
    'Net XP applied to student balances',
    ['source']
)

# Labels: action (like/unlike)
like_toggles_total = Counter(
    'pungpung_like_toggles_total',
    'Total number of like toggles',
    ['action']
)

level_ups_total = Counter(
    'pungpung_level_ups_total',
    'Total number of level-up events'
)

# Labels: type (cheer/mission), status (sent/rate_limited)
mailbox_messages_total = Counter(
    'pungpung_mailbox_messages_total',
    'Total number of mailbox send attempts',
    ['type', 'status']
)


def record_circuit_breaker_state(api: str, state: str) -> None:
    """
    Record circuit breaker state change.

    Args:
        api: Breaker name (text_generation)
        state: New state (closed, open, half_open)
    """
    try:
        circuit_breaker_state.labels(api=api).state(state)
        logger.debug(f"[METRICS] Circuit breaker {api} state: {state}")
    except Exception as e:
        logger.error(f"Failed to record circuit breaker state: {e}")


def record_api_call(api: str, success: bool, duration: float) -> None:
    """Record an external API call and its duration"""
    try:
        status = 'success' if success else 'failure'
        api_calls_total.labels(api=api, status=status).inc()
        api_call_duration.labels(api=api).observe(duration)
        logger.debug(f"[METRICS] API call {api}: {status}, duration: {duration:.2f}s")
    except Exception as e:
        logger.error(f"Failed to record API call metrics: {e}")


def record_api_failure(api: str, error_type: str) -> None:
    """Record an external API failure by exception class name"""
    try:
        api_failures_total.labels(api=api, error_type=error_type).inc()
        logger.debug(f"[METRICS] API failure {api}: {error_type}")
    except Exception as e:
        logger.error(f"Failed to record API failure: {e}")


def record_fallback(primary_api: str, fallback_strategy: str, success: bool) -> None:
    """Record a fallback strategy execution"""
    try:
        status = 'success' if success else 'failure'
        fallback_executions_total.labels(
            primary_api=primary_api,
            fallback_strategy=fallback_strategy,
            status=status
        ).inc()
        logger.debug(f"[METRICS] Fallback {primary_api} -> {fallback_strategy}: {status}")
    except Exception as e:
        logger.error(f"Failed to record fallback: {e}")


def record_xp_change(source: str, amount: int) -> None:
    """
    Record XP applied to a balance.

    Negative amounts (unlikes) are recorded as their absolute value under
    source 'unlike' since counters cannot decrease.
    """
    try:
        if amount < 0:
            xp_awarded_total.labels(source="unlike").inc(-amount)
        else:
            xp_awarded_total.labels(source=source).inc(amount)
    except Exception as e:
        logger.error(f"Failed to record XP change: {e}")


def record_like_toggle(action: str) -> None:
    try:
        like_toggles_total.labels(action=action).inc()
    except Exception as e:
        logger.error(f"Failed to record like toggle: {e}")


def record_level_up() -> None:
    try:
        level_ups_total.inc()
    except Exception as e:
        logger.error(f"Failed to record level up: {e}")


def record_mailbox_message(message_type: str, status: str) -> None:
    try:
        mailbox_messages_total.labels(type=message_type, status=status).inc()
    except Exception as e:
        logger.error(f"Failed to record mailbox message: {e}")
