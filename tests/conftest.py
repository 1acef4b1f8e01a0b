"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path
from typing import Any, Callable

import pytest

from codex_review.config import CodexReviewConfig
from codex_review.models import EffortLevel, InvocationRequest


# -----------------------------------------------------------------------------
# Fake clock
# -----------------------------------------------------------------------------


class FakeTimer:
    def __init__(self, due_ms: int, callback: Callable[[], None]):
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now_ms + delay_ms, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, ms: int) -> None:
        target = self.now_ms + ms
        while True:
            due = sorted((t for t in self.pending() if t.due_ms <= target), key=lambda t: t.due_ms)
            if not due:
                break
            timer = due[0]
            self.now_ms = timer.due_ms
            timer.fired = True
            timer.callback()
        self.now_ms = target


# -----------------------------------------------------------------------------
# Fake child process
# -----------------------------------------------------------------------------


class FakeStdin:
    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False
        self.fail_with: BaseException | None = None

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class FakeProcess:
    """Stands in for asyncio.subprocess.Process. Create inside a running loop."""

    def __init__(self, *, with_stdin: bool = True, pid: int = 4242):
        self.pid = pid
        self.stdin = FakeStdin() if with_stdin else None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.signals: list[str] = []
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.signals.append("terminate")

    def kill(self) -> None:
        self.signals.append("kill")

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int, *, stdout: bytes = b"", stderr: bytes = b"", pipes_held: bool = False) -> None:
        """Finish the child. With `pipes_held`, a descendant keeps the output
        pipes open: no EOF arrives and wait() never returns."""
        if stdout:
            self.stdout.feed_data(stdout)
        if stderr:
            self.stderr.feed_data(stderr)
        self.returncode = code
        if pipes_held:
            return
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()


class FakeSpawner:
    """Records spawn calls and hands out prepared FakeProcesses."""

    def __init__(self, *procs: FakeProcess, error: Exception | None = None):
        self.procs = list(procs)
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, program: str, *args: str, env: dict[str, str]) -> FakeProcess:
        self.calls.append({"program": program, "args": list(args), "env": dict(env)})
        if self.error is not None:
            raise self.error
        return self.procs.pop(0)


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def make_request() -> Callable[..., InvocationRequest]:
    def _make(payload: str = "Review this plan.", **kwargs: Any) -> InvocationRequest:
        kwargs.setdefault("command_selector", "gpt-5-codex")
        kwargs.setdefault("effort_level", EffortLevel.HIGH)
        return InvocationRequest(payload=payload, **kwargs)

    return _make


@pytest.fixture
def config(tmp_path: Path) -> CodexReviewConfig:
    return CodexReviewConfig(api_key="sk-test", audit_log=tmp_path / "audit.log")


@pytest.fixture
def make_program(tmp_path: Path) -> Callable[..., str]:
    """Write an executable Python script that stands in for codex."""
    if sys.platform == "win32":
        pytest.skip("shebang scripts require a POSIX host")

    def _make(body: str, name: str = "fake-codex") -> str:
        path = tmp_path / name
        path.write_text(
            f"#!{sys.executable}\nimport json, os, signal, sys, time\n{textwrap.dedent(body)}\n",
            encoding="utf-8",
        )
        path.chmod(0o755)
        return str(path)

    return _make


class StubInvoker:
    """Returns a canned result and records requests."""

    def __init__(self, result: Any):
        self.result = result
        self.requests: list[InvocationRequest] = []

    async def invoke(self, request: InvocationRequest) -> Any:
        self.requests.append(request)
        return self.result
