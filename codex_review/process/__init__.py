"""
External process invocation.

ProcessInvoker is the only component that starts child processes. It turns
every outcome (exit, hang, stream error, spawn error) into one
InvocationResult.
"""

from __future__ import annotations

from .invoker import ProcessInvoker, build_argv, reap_background, spawn_subprocess
from .scheduler import LoopScheduler, Scheduler, TimerHandle

__all__ = [
    "ProcessInvoker",
    "build_argv",
    "reap_background",
    "spawn_subprocess",
    "LoopScheduler",
    "Scheduler",
    "TimerHandle",
]
