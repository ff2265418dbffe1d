"""Global pacing and timeout guard for exchange calls.

Every cancel, place and balance call from every market goes through a
single RateLimiter so the exchange never sees two calls closer together
than ``min_interval`` seconds. Each call is also bounded by ``timeout``.
Any failure comes back as ExchangeCallError so the rebalancer only has
one exception type to abort a cycle on.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from lending_bot.exceptions import ExchangeCallError
from lending_bot.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Serialises exchange calls with a minimum spacing and a timeout.

    Args:
        min_interval: Minimum seconds between the start of two calls.
        timeout: Maximum seconds a single call may take.
    """

    def __init__(self, min_interval: float, timeout: float) -> None:
        self._min_interval = min_interval
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._last_call: float | None = None

    async def call(
        self,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: object,
        paced: bool = True,
    ) -> T:
        """Run ``fn(*args)`` once the spacing allows it.

        Args:
            name: Short call name used in logs and error messages.
            fn: Coroutine function performing the exchange call.
            paced: False for cheap reads that need the timeout and error
                mapping but not the spacing.

        Raises:
            ExchangeCallError: If the call times out or raises.
        """
        if paced:
            async with self._lock:
                if self._last_call is not None:
                    wait = self._min_interval - (time.monotonic() - self._last_call)
                    if wait > 0:
                        await asyncio.sleep(wait)
                self._last_call = time.monotonic()

        try:
            return await asyncio.wait_for(fn(*args), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("exchange_call_timeout", call=name, timeout=self._timeout)
            raise ExchangeCallError(f"{name} timed out after {self._timeout}s") from exc
        except ExchangeCallError:
            raise
        except Exception as exc:
            logger.error("exchange_call_failed", call=name, error=str(exc))
            raise ExchangeCallError(f"{name} failed: {exc}") from exc
