"""codex-review - MCP server that delegates review requests to the codex CLI."""

__version__ = "1.0.0"
