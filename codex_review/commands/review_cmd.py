"""Review command - one-shot codex review from the terminal."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from ..config import API_KEY_ENV, CodexReviewConfig
from ..handler import ReviewArgs, ReviewHandler
from ..models import EffortLevel, Failure
from ..process import reap_background


def run_review(
    config: CodexReviewConfig,
    prompt: str,
    *,
    model: str | None = None,
    effort: str = EffortLevel.HIGH.value,
    output_file: str | None = None,
    timeout_ms: int | None = None,
    handler: ReviewHandler | None = None,
) -> int:
    """
    Run one review and print the review text to stdout.

    Status and errors go to stderr. Returns a process exit code:
    0 on success, 1 when codex failed or the result could not be saved.
    """
    console = Console(stderr=True)

    if not config.has_api_key:
        raise click.ClickException(f"{API_KEY_ENV} not set. Export it or add it to your environment.")

    handler = handler or ReviewHandler(config)
    args = ReviewArgs(
        prompt=prompt,
        reasoning_effort=EffortLevel(effort),
        model=model or config.default_model,
        output_file=output_file,
        timeout_ms=timeout_ms,
    )

    console.print(
        f"[dim]Requesting review from {args.model} (effort: {args.reasoning_effort.value}, "
        f"{len(prompt.encode('utf-8'))} bytes)...[/dim]"
    )
    outcome = asyncio.run(_review_and_reap(handler, args))

    if isinstance(outcome.result, Failure):
        console.print(f"[red]Error calling Codex ({outcome.result.kind.value}):[/red] {outcome.result.message}")
        return 1

    click.echo(outcome.result.stdout_text, nl=not outcome.result.stdout_text.endswith("\n"))

    if outcome.save_error:
        console.print(f"[red]{outcome.save_error}[/red]")
        return 1
    if outcome.saved_to:
        console.print(f"[green]Saved review to[/green] {outcome.saved_to}")
    return 0


async def _review_and_reap(handler: ReviewHandler, args: ReviewArgs):
    # asyncio.run() cancels leftover tasks on exit; a timed-out child must
    # still be escalated and reaped first.
    outcome = await handler.review(args)
    await reap_background()
    return outcome
