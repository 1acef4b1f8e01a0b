"""MCP stdio server for codex-review."""

from __future__ import annotations

from .server import CodexReviewServer, MessageStream, run_stdio_server

__all__ = ["CodexReviewServer", "MessageStream", "run_stdio_server"]
