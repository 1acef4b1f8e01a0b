"""Data models for codex invocations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class EffortLevel(str, Enum):
    """Reasoning effort passed to codex as `model_reasoning_effort`."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FailureKind(str, Enum):
    """Why an invocation did not produce review text."""

    SPAWN_FAILED = "spawn_failed"
    STREAM_UNAVAILABLE = "stream_unavailable"
    STDIN_WRITE_FAILED = "stdin_write_failed"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    OUTPUT_TOO_LARGE = "output_too_large"


class InvocationState(str, Enum):
    """Lifecycle of one child process."""

    RUNNING = "running"
    TERMINATING = "terminating"
    KILLING = "killing"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class InvocationRequest:
    """
    One request for the external program.

    `payload` only ever reaches the child through its stdin. It is not
    validated here: an empty payload is still a valid request.
    """

    payload: str
    command_selector: str  # model name, e.g. "gpt-5-codex"
    effort_level: EffortLevel = EffortLevel.HIGH
    timeout_override_ms: int | None = None

    def __post_init__(self) -> None:
        if self.timeout_override_ms is not None and self.timeout_override_ms <= 0:
            raise ValueError(f"timeout_override_ms must be > 0 (got {self.timeout_override_ms})")


@dataclass(frozen=True)
class Success:
    stdout_text: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False


InvocationResult = Union[Success, Failure]
