"""
Cancellable delayed callbacks.

The invoker never touches the event loop's clock directly. It asks a
Scheduler for timers, so tests can drive the timeout/kill escalation with a
fake clock instead of sleeping.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """A pending delayed callback."""

    def cancel(self) -> None:
        """Prevent the callback from running. Idempotent."""
        ...


class Scheduler(Protocol):
    """Protocol for scheduling delayed callbacks."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """
        Run `callback` once after `delay_ms` milliseconds.

        Args:
            delay_ms: Delay in milliseconds (>= 0)
            callback: Zero-argument callable, run on the event loop thread

        Returns:
            A handle whose cancel() prevents the callback from running.
        """
        ...


class LoopScheduler:
    """Schedule callbacks on the running asyncio loop."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay_ms / 1000.0, callback)
