"""Fallback strategies for collaborator failures

Tries strategies in priority order until one succeeds. Text generation uses it
to degrade from the live model to static copy.
"""

import logging
from typing import Any, Awaitable, Callable, List, TypeVar
from dataclasses import dataclass

from pungpung.resilience.metrics import record_fallback

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class FallbackStrategy:
    """
    A named strategy with a priority (lower = tried first, 1 = primary)
    """
    name: str
    handler: Callable[..., Awaitable[Any]]
    priority: int


async def execute_with_fallbacks(
    strategies: List[FallbackStrategy],
    *args: Any,
    **kwargs: Any
) -> Any:
    """
    Execute strategies in priority order until one succeeds.

    Args:
        strategies: Strategies to try
        *args, **kwargs: Arguments passed to each handler

    Returns:
        Result from the first successful strategy

    Raises:
        The last exception if every strategy fails

    Example:
        strategies = [
            FallbackStrategy("openai", generate_with_model, priority=1),
            FallbackStrategy("static", static_text, priority=2),
        ]
        text = await execute_with_fallbacks(strategies, payload)
    """
    if not strategies:
        raise ValueError("No fallback strategies given")

    sorted_strategies = sorted(strategies, key=lambda s: s.priority)
    primary = sorted_strategies[0].name
    last_exception: Exception = None

    for strategy in sorted_strategies:
        try:
            logger.debug(f"[FALLBACK] Trying strategy: {strategy.name}")
            result = await strategy.handler(*args, **kwargs)

            if strategy.priority > 1:
                logger.info(f"[FALLBACK] Strategy '{strategy.name}' used for {primary}")
                record_fallback(primary, strategy.name, success=True)
            return result

        except Exception as e:
            logger.warning(
                f"[FALLBACK] Strategy '{strategy.name}' failed: "
                f"{type(e).__name__}: {e}"
            )
            last_exception = e
            if strategy.priority > 1:
                record_fallback(primary, strategy.name, success=False)

    logger.error(
        f"[FALLBACK] All {len(sorted_strategies)} fallback strategies exhausted"
    )
    raise last_exception
