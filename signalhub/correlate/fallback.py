"""
Strategy Fallback

One place that decides when a preferred strategy (semantic matching) gives
way to a fallback strategy (keyword matching). Call sites never catch
provider errors themselves.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

from ..common.errors import (
    ConfigurationError,
    ContentValidationError,
    QuotaExceededError,
    TransientProviderError,
)

logger = logging.getLogger("signalhub.correlate.fallback")

T = TypeVar("T")

# Errors that degrade one item instead of failing the batch
FALLBACK_ERRORS: Tuple[Type[Exception], ...] = (
    QuotaExceededError,
    TransientProviderError,
    ContentValidationError,
    ConfigurationError,
)


@dataclass
class FallbackOutcome(Generic[T]):
    value: T
    used_fallback: bool = False
    error: Optional[Exception] = None


async def run_with_fallback(
    preferred: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
    label: str = "",
) -> FallbackOutcome[T]:
    """
    Run ``preferred``; on a provider error run ``fallback`` instead.

    Args:
        preferred: Coroutine factory for the preferred strategy
        fallback: Coroutine factory used when the preferred one fails
        label: Item identifier for the warning log

    Returns:
        FallbackOutcome recording which strategy produced the value
    """
    try:
        return FallbackOutcome(value=await preferred())
    except FALLBACK_ERRORS as e:
        logger.warning("Falling back for %s: %s", label or "item", e)
        return FallbackOutcome(value=await fallback(), used_fallback=True, error=e)
