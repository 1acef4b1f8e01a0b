"""CLI entrypoint for codex-review."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import load_config
from .models import EffortLevel


def _setup_logging(level: str) -> None:
    """Route all logging to stderr; stdout belongs to the MCP protocol."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(__version__, prog_name="codex-review")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
    help="Logging verbosity (logs go to stderr)",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """codex-review - delegate review requests to the codex CLI.

    Serve the codex_review tool over MCP stdio, or run a single review.
    """
    ctx.ensure_object(dict)
    _setup_logging(log_level)
    ctx.obj["config"] = load_config()


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Start the MCP server on stdio.

    Configure your MCP client to launch:

        codex-review serve

    with OPENAI_API_KEY set in the server environment.
    """
    from .mcp import run_stdio_server

    sys.exit(run_stdio_server(ctx.obj["config"]))


@cli.command()
@click.argument("prompt", required=False)
@click.option(
    "--prompt-file",
    "-f",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the prompt from a file",
)
@click.option("--model", "-m", type=str, default=None, help="Codex model (default: gpt-5-codex)")
@click.option(
    "--effort",
    "-e",
    type=click.Choice([e.value for e in EffortLevel]),
    default=EffortLevel.HIGH.value,
    show_default=True,
    help="Reasoning effort",
)
@click.option(
    "--output",
    "-o",
    "output_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also save the review to this file (parent directories are created)",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Kill codex after this many milliseconds (default: CODEX_REVIEW_TIMEOUT_MS or 300000)",
)
@click.pass_context
def review(
    ctx: click.Context,
    prompt: str | None,
    prompt_file: Path | None,
    model: str | None,
    effort: str,
    output_file: str | None,
    timeout_ms: int | None,
) -> None:
    """Request a review from codex and print it.

    PROMPT may be given inline, as "-" to read stdin, or via --prompt-file.

    Examples:

        codex-review review "Is this retry policy sound?"

        git diff | codex-review review - --effort medium

        codex-review review -f request.md -o reviews/latest.md
    """
    from .commands.review_cmd import run_review

    if prompt_file is not None:
        if prompt is not None:
            raise click.BadParameter("Pass either PROMPT or --prompt-file, not both.", param_hint="PROMPT")
        text = prompt_file.read_text(encoding="utf-8")
    elif prompt is None or prompt == "-":
        if prompt is None and sys.stdin.isatty():
            raise click.BadParameter("No prompt given.", param_hint="PROMPT")
        text = sys.stdin.read()
    else:
        text = prompt

    exit_code = run_review(
        ctx.obj["config"],
        text,
        model=model,
        effort=effort,
        output_file=output_file,
        timeout_ms=timeout_ms,
    )
    sys.exit(exit_code)


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
