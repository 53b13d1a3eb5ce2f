from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Callable[[], Awaitable[T]]


def _label(strategy: Callable) -> str:
    func = getattr(strategy, "func", strategy)
    return getattr(func, "__name__", repr(strategy))


async def first_successful(strategies: Sequence[Strategy]) -> T:
    """Await each strategy in order and return the first result.

    Only the last strategy's error propagates; earlier failures are logged.
    """
    if not strategies:
        raise ValueError("first_successful requires at least one strategy")
    last_index = len(strategies) - 1
    for index, strategy in enumerate(strategies):
        try:
            return await strategy()
        except Exception as exc:
            if index == last_index:
                raise
            logger.debug("Strategy %s failed, trying next: %s", _label(strategy), exc)
