"""Periodic async tasks with cooperative, prompt cancellation.

Every engine loop follows the same shape: run one cycle, absorb and log any
failure, then sleep until the next cycle. The sleep waits on the shared stop
event, so a stop request interrupts it immediately instead of waiting out
the interval.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from .logging_setup import logger


async def interruptible_sleep(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep for ``seconds`` or until ``stop_event`` is set.

    Returns:
        True if the stop event was set, False if the full interval elapsed
    """
    if stop_event.is_set():
        return True
    if seconds <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


class PeriodicTask:
    """Run an async callback every ``interval`` seconds until stopped.

    Args:
        name: Used in log lines
        callback: Async callable invoked once per cycle
        interval: Seconds between the end of one cycle and the start of the next
        stop_event: Shared event that ends the loop when set
        initial_delay: Seconds to wait before the first cycle
        should_continue: Optional predicate checked before every cycle
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        stop_event: asyncio.Event,
        *,
        initial_delay: float = 0.0,
        should_continue: Optional[Callable[[], bool]] = None,
    ):
        self.name = name
        self.callback = callback
        self.interval = interval
        self.stop_event = stop_event
        self.initial_delay = initial_delay
        self.should_continue = should_continue or (lambda: True)
        self.cycles = 0
        self.failures = 0

    def _active(self) -> bool:
        return not self.stop_event.is_set() and self.should_continue()

    async def run(self) -> None:
        logger.info(f"{self.name} loop started | interval={self.interval}s offset={self.initial_delay}s")
        try:
            if self.initial_delay and await interruptible_sleep(self.stop_event, self.initial_delay):
                return
            while self._active():
                try:
                    await self.callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.failures += 1
                    logger.exception(f"{self.name} cycle failed, skipping to next cycle")
                self.cycles += 1
                if not self._active():
                    break
                if await interruptible_sleep(self.stop_event, self.interval):
                    break
        except asyncio.CancelledError:
            logger.info(f"{self.name} loop cancelled")
            raise
        finally:
            logger.info(f"{self.name} loop stopped | cycles={self.cycles} failures={self.failures}")
