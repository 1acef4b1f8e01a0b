"""
Managed execution of the external codex program.

One call to ProcessInvoker.invoke() owns one child process from spawn to
reap. The prompt goes to the child over stdin only; it never appears in
argv, where it would be visible to other users of the host and could exceed
the OS argument-length limit.

Per invocation:

    running --timeout--> terminating --grace--> killing
       |                     |                     |
       +------- exit --------+-------- exit -------+--> resolved

Every path resolves one future exactly once. A timeout resolves the call
immediately; the kill escalation and the reaping of the child continue in
the background.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Mapping

from ..config import (
    API_KEY_ENV,
    DEFAULT_EXECUTABLE,
    DEFAULT_TIMEOUT_MS,
    KILL_GRACE_MS,
    CodexReviewConfig,
    read_timeout_ms,
)
from ..models import (
    Failure,
    FailureKind,
    InvocationRequest,
    InvocationResult,
    InvocationState,
    Success,
)
from .scheduler import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_REAP_POLL_S = 0.05

# Children still being reaped after their invocation resolved.
_background: set[asyncio.Task[Any]] = set()

SpawnFn = Callable[..., Awaitable[Any]]


async def spawn_subprocess(program: str, *args: str, env: Mapping[str, str]) -> asyncio.subprocess.Process:
    """Launch `program` with all three standard streams piped."""
    return await asyncio.create_subprocess_exec(
        program,
        *args,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env),
    )


async def reap_background(timeout: float | None = None) -> None:
    """Wait up to `timeout` seconds for children left over from resolved invocations."""
    loop = asyncio.get_running_loop()
    pending = [t for t in _background if t.get_loop() is loop]
    if pending:
        await asyncio.wait(pending, timeout=timeout)


def build_argv(request: InvocationRequest) -> list[str]:
    """Argument vector for `codex exec`. Never includes the payload."""
    return [
        "exec",
        "--full-auto",
        "-m",
        request.command_selector,
        "-c",
        f"model_reasoning_effort={request.effort_level.value}",
    ]


class _Invocation:
    """Process handle, buffers and timer pair for one in-flight call."""

    def __init__(
        self,
        proc: Any,
        *,
        program: str,
        timeout_ms: int,
        kill_grace_ms: int,
        max_output_bytes: int | None,
        scheduler: Scheduler,
    ):
        self.proc = proc
        self.program = program
        self.timeout_ms = timeout_ms
        self.kill_grace_ms = kill_grace_ms
        self.max_output_bytes = max_output_bytes
        self.scheduler = scheduler

        self.state = InvocationState.RUNNING
        self.stdout = bytearray()
        self.stderr = bytearray()

        self._outcome: asyncio.Future[InvocationResult] = asyncio.get_running_loop().create_future()
        self._term_timer: TimerHandle | None = None
        self._kill_timer: TimerHandle | None = None
        self._feeder: asyncio.Task[None] | None = None
        self._watcher: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _resolve(self, result: InvocationResult) -> bool:
        """Set the outcome if nothing else has. Returns True if this call won."""
        if self._outcome.done():
            return False
        self._outcome.set_result(result)
        return True

    def _fail(self, failure: Failure) -> None:
        """Resolve with a failure and shut the child down."""
        if self._resolve(failure):
            self._begin_shutdown()

    # -------------------------------------------------------------------------
    # Escalation state machine
    # -------------------------------------------------------------------------

    def _signal(self, method: str) -> None:
        if self.proc.returncode is not None:
            return
        try:
            getattr(self.proc, method)()
        except ProcessLookupError:
            pass

    def _cancel_timers(self) -> None:
        if self._term_timer is not None:
            self._term_timer.cancel()
            self._term_timer = None
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None

    def _begin_shutdown(self) -> None:
        """SIGTERM now, SIGKILL after the grace period if still alive."""
        if self.state is not InvocationState.RUNNING:
            return
        if self._term_timer is not None:
            self._term_timer.cancel()
            self._term_timer = None
        self.state = InvocationState.TERMINATING
        logger.info(f"Terminating {self.program} (pid {getattr(self.proc, 'pid', '?')})")
        self._signal("terminate")
        self._kill_timer = self.scheduler.call_later(self.kill_grace_ms, self._on_kill_grace)

    def _on_timeout(self) -> None:
        self._term_timer = None
        if self.state is not InvocationState.RUNNING:
            return
        logger.warning(f"{self.program} timed out after {self.timeout_ms} ms")
        self._begin_shutdown()
        self._resolve(Failure(FailureKind.TIMEOUT, f"{self.program} timed out after {self.timeout_ms} ms"))

    def _on_kill_grace(self) -> None:
        self._kill_timer = None
        if self.state is not InvocationState.TERMINATING:
            return
        logger.warning(f"{self.program} ignored SIGTERM for {self.kill_grace_ms} ms; killing")
        self._signal("kill")
        self.state = InvocationState.KILLING

    def _on_exit(self, returncode: int | None) -> None:
        self.state = InvocationState.RESOLVED
        self._cancel_timers()

        stderr_text = self.stderr.decode("utf-8", errors="replace")
        if returncode == 0:
            won = self._resolve(Success(self.stdout.decode("utf-8", errors="replace")))
            if won and stderr_text:
                logger.warning(f"{self.program} stderr: {stderr_text}")
        else:
            won = self._resolve(
                Failure(FailureKind.NON_ZERO_EXIT, f"{self.program} exited with code {returncode}:\n{stderr_text}")
            )
        if not won:
            logger.debug(f"{self.program} exited with code {returncode} after the call resolved")

    # -------------------------------------------------------------------------
    # Stream tasks
    # -------------------------------------------------------------------------

    async def _feed_stdin(self, data: bytes) -> None:
        stdin = self.proc.stdin
        try:
            stdin.write(data)
            await stdin.drain()
            stdin.close()
            await stdin.wait_closed()
        except OSError as e:
            # BrokenPipeError / ConnectionResetError: the child stopped reading.
            self._fail(Failure(FailureKind.STDIN_WRITE_FAILED, f"Failed to write prompt to {self.program} stdin: {e}"))

    async def _pump(self, stream: Any, buf: bytearray) -> None:
        if stream is None:
            return
        while True:
            try:
                chunk = await stream.read(_READ_CHUNK)
            except OSError as e:
                logger.debug(f"{self.program} output stream error: {e}")
                return
            if not chunk:
                return
            if self._outcome.done():
                continue
            buf.extend(chunk)
            if self.max_output_bytes is not None and len(self.stdout) + len(self.stderr) > self.max_output_bytes:
                self._fail(
                    Failure(
                        FailureKind.OUTPUT_TOO_LARGE,
                        f"{self.program} output exceeded {self.max_output_bytes} bytes",
                    )
                )

    async def _watch_exit(self) -> None:
        pumps = asyncio.gather(
            self._pump(self.proc.stdout, self.stdout),
            self._pump(self.proc.stderr, self.stderr),
        )
        await asyncio.wait([pumps, self._outcome], return_when=asyncio.FIRST_COMPLETED)
        if pumps.done():
            # Natural exit: both output pipes hit EOF, then the process is gone.
            returncode = await self.proc.wait()
        else:
            # Already resolved. A descendant of the child can hold the pipes
            # open indefinitely, so only the child itself is waited for.
            returncode = await self._wait_for_child()
            pumps.cancel()
        self._on_exit(returncode)

    async def _wait_for_child(self) -> int | None:
        # proc.wait() can block on the pipes as well; returncode is set as
        # soon as the child is reaped.
        exited = asyncio.ensure_future(self.proc.wait())
        try:
            while not exited.done() and self.proc.returncode is None:
                await asyncio.wait([exited], timeout=_REAP_POLL_S)
        finally:
            exited.cancel()
        return self.proc.returncode

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    async def run(self, payload: str) -> InvocationResult:
        self._watcher = asyncio.create_task(self._watch_exit())

        if self.proc.stdin is None:
            self._fail(Failure(FailureKind.STREAM_UNAVAILABLE, f"{self.program} stdin is not available"))
        else:
            self._term_timer = self.scheduler.call_later(self.timeout_ms, self._on_timeout)
            self._feeder = asyncio.create_task(self._feed_stdin(payload.encode("utf-8")))

        try:
            return await self._outcome
        except asyncio.CancelledError:
            self._abort()
            raise
        finally:
            self._release()

    def _abort(self) -> None:
        """Caller went away: kill immediately, let the watcher reap."""
        if self.state in (InvocationState.RUNNING, InvocationState.TERMINATING):
            self._cancel_timers()
            self._signal("kill")
            self.state = InvocationState.KILLING

    def _release(self) -> None:
        if self._feeder is not None and not self._feeder.done():
            self._feeder.cancel()
        if self._watcher is not None and not self._watcher.done():
            _background.add(self._watcher)
            self._watcher.add_done_callback(_background.discard)


class ProcessInvoker:
    """
    Run the external review program for one request at a time per call.

    Invocations share nothing but configuration, so any number may run
    concurrently.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        executable: str = DEFAULT_EXECUTABLE,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        kill_grace_ms: int = KILL_GRACE_MS,
        max_output_bytes: int | None = None,
        scheduler: Scheduler | None = None,
        spawn: SpawnFn | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.executable = executable
        self.default_timeout_ms = default_timeout_ms
        self.kill_grace_ms = kill_grace_ms
        self.max_output_bytes = max_output_bytes
        self._api_key = api_key
        self._scheduler = scheduler or LoopScheduler()
        self._spawn = spawn or spawn_subprocess
        self._environ = environ

    @classmethod
    def from_config(cls, config: CodexReviewConfig, **overrides: Any) -> ProcessInvoker:
        kwargs: dict[str, Any] = {
            "api_key": config.api_key,
            "executable": config.executable,
            "default_timeout_ms": config.timeout_ms,
            "kill_grace_ms": config.kill_grace_ms,
            "max_output_bytes": config.max_output_bytes,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def _child_env(self) -> dict[str, str]:
        env = dict(os.environ if self._environ is None else self._environ)
        if self._api_key:
            env[API_KEY_ENV] = self._api_key
        return env

    def _timeout_for(self, request: InvocationRequest) -> int:
        if request.timeout_override_ms is not None:
            return request.timeout_override_ms
        return read_timeout_ms(self._environ, self.default_timeout_ms)

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        """
        Run the program for `request` and return its output or a typed failure.

        Never raises for process, stream or timeout problems; those come back
        as Failure values. Cancelling the awaiting task kills the child.
        """
        argv = build_argv(request)
        timeout_ms = self._timeout_for(request)

        try:
            proc = await self._spawn(self.executable, *argv, env=self._child_env())
        except (OSError, ValueError) as e:
            # ValueError: a NUL byte in the executable, argv or environment.
            logger.error(f"Failed to spawn {self.executable}: {e}")
            return Failure(FailureKind.SPAWN_FAILED, f"Failed to spawn {self.executable}: {e}")

        logger.info(
            f"Started {self.executable} (pid {getattr(proc, 'pid', '?')}, model {request.command_selector}, "
            f"effort {request.effort_level.value}, prompt {len(request.payload.encode('utf-8'))} bytes, "
            f"timeout {timeout_ms} ms)"
        )

        invocation = _Invocation(
            proc,
            program=self.executable,
            timeout_ms=timeout_ms,
            kill_grace_ms=self.kill_grace_ms,
            max_output_bytes=self.max_output_bytes,
            scheduler=self._scheduler,
        )
        return await invocation.run(request.payload)
