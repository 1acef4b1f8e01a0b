"""
The codex_review operation.

Validates caller arguments, checks the API key precondition, runs codex
through ProcessInvoker and optionally saves the review to a file. Results
are shaped as MCP tool results.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .audit_log import log_invocation
from .config import API_KEY_ENV, CodexReviewConfig
from .models import EffortLevel, Failure, InvocationRequest, InvocationResult, Success
from .persist import write_result
from .process import ProcessInvoker

logger = logging.getLogger(__name__)

TOOL_NAME = "codex_review"

MISSING_API_KEY_MESSAGE = (
    f"Error: {API_KEY_ENV} not set. Please configure the API key in your MCP server settings."
)


def tool_definition(default_model: str) -> dict[str, Any]:
    return {
        "name": TOOL_NAME,
        "description": (
            "Request a methodology review from GPT-5 Codex. Returns Codex's analysis and recommendations."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["prompt"],
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": (
                        "The review request prompt. Should include context, current state, "
                        "proposed approach, and specific questions."
                    ),
                },
                "reasoning_effort": {
                    "type": "string",
                    "enum": [e.value for e in EffortLevel],
                    "description": (
                        "Reasoning effort level (default: high). Use 'high' for important methodology decisions."
                    ),
                    "default": EffortLevel.HIGH.value,
                },
                "output_file": {
                    "type": "string",
                    "description": (
                        "Optional: Path to save the review response. Parent directories will be created if needed."
                    ),
                },
                "model": {
                    "type": "string",
                    "description": f"Codex model to use (default: {default_model})",
                    "default": default_model,
                },
            },
        },
    }


@dataclass(frozen=True)
class ReviewArgs:
    prompt: str
    reasoning_effort: EffortLevel = EffortLevel.HIGH
    model: str = ""
    output_file: str | None = None
    timeout_ms: int | None = None


def parse_arguments(arguments: dict[str, Any], *, default_model: str) -> ReviewArgs:
    """Validate raw tool arguments. Raises ValueError on bad input."""
    prompt = arguments.get("prompt")
    if not isinstance(prompt, str):
        raise ValueError("Missing required argument: prompt (string)")

    raw_effort = arguments.get("reasoning_effort")
    if raw_effort is None:
        effort = EffortLevel.HIGH
    else:
        if not isinstance(raw_effort, str):
            raise ValueError("reasoning_effort must be a string")
        try:
            effort = EffortLevel(raw_effort.strip().lower())
        except ValueError:
            allowed = ", ".join(e.value for e in EffortLevel)
            raise ValueError(f"Invalid reasoning_effort (expected one of {allowed}): {raw_effort}") from None

    model = arguments.get("model")
    if model is None:
        model = default_model
    elif not isinstance(model, str) or not model.strip():
        raise ValueError("model must be a non-empty string")
    model = model.strip()
    if model.startswith("-") or "\x00" in model:
        raise ValueError(f"Invalid model name: {model!r}")

    output_file = arguments.get("output_file")
    if output_file is not None:
        if not isinstance(output_file, str):
            raise ValueError("output_file must be a string")
        if "\x00" in output_file:
            raise ValueError("output_file must not contain NUL bytes")
        output_file = output_file.strip() or None

    return ReviewArgs(prompt=prompt, reasoning_effort=effort, model=model, output_file=output_file)


@dataclass
class ReviewOutcome:
    """What happened to one review call."""

    result: InvocationResult
    saved_to: Path | None = None
    save_error: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Success) and self.save_error is None

    def to_tool_result(self) -> dict[str, Any]:
        if isinstance(self.result, Failure):
            return _tool_text(f"Error calling Codex: {self.result.message}", is_error=True)
        if self.save_error is not None:
            return _tool_text(f"{self.save_error}\n\n{self.result.stdout_text}", is_error=True)
        return _tool_text(self.result.stdout_text)


def _tool_text(text: str, *, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


class ReviewHandler:
    """Runs codex_review calls against a ProcessInvoker."""

    def __init__(
        self,
        config: CodexReviewConfig,
        invoker: ProcessInvoker | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.invoker = invoker or ProcessInvoker.from_config(config)
        self._clock = clock

    def parse(self, arguments: dict[str, Any]) -> ReviewArgs:
        return parse_arguments(arguments, default_model=self.config.default_model)

    async def review(self, args: ReviewArgs) -> ReviewOutcome:
        """Run codex for `args` and save the result if requested. Assumes the API key is set."""
        request = InvocationRequest(
            payload=args.prompt,
            command_selector=args.model,
            effort_level=args.reasoning_effort,
            timeout_override_ms=args.timeout_ms,
        )

        started = self._clock()
        result = await self.invoker.invoke(request)
        outcome = ReviewOutcome(result=result)

        if isinstance(result, Success) and args.output_file:
            try:
                outcome.saved_to = write_result(args.output_file, result.stdout_text)
            except OSError as e:
                logger.error(f"Failed to save review to {args.output_file}: {e}")
                outcome.save_error = f"Error saving review to {args.output_file}: {e}"

        if isinstance(result, Failure):
            logger.warning(f"codex_review failed ({result.kind.value}): {result.message}")

        self._audit(args, outcome, duration_ms=int((self._clock() - started) * 1000))
        return outcome

    def _audit(self, args: ReviewArgs, outcome: ReviewOutcome, *, duration_ms: int) -> None:
        if self.config.audit_log is None:
            return
        result = outcome.result
        try:
            log_invocation(
                self.config.audit_log,
                model=args.model,
                effort=args.reasoning_effort.value,
                outcome="success" if isinstance(result, Success) else result.kind.value,
                duration_ms=duration_ms,
                prompt_bytes=len(args.prompt.encode("utf-8")),
                output_bytes=len(result.stdout_text.encode("utf-8")) if isinstance(result, Success) else 0,
                output_file=str(outcome.saved_to) if outcome.saved_to else None,
            )
        except OSError as e:
            logger.warning(f"Failed to write audit log {self.config.audit_log}: {e}")

    async def handle(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Handle one tools/call for codex_review.

        Raises ValueError for invalid arguments; everything else comes back
        as a tool result.
        """
        args = self.parse(arguments)
        if not self.config.has_api_key:
            return _tool_text(MISSING_API_KEY_MESSAGE, is_error=True)
        outcome = await self.review(args)
        return outcome.to_tool_result()
