"""MCP server exposing the codex_review tool.

Implements a minimal MCP-over-stdio JSON-RPC loop. The main thread reads
requests; tool calls run concurrently on one long-lived event loop thread and
write their responses when they finish.

stdout carries protocol messages only; all logging goes to stderr.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import sys
import threading
from typing import Any

from .. import __version__
from ..config import API_KEY_ENV, CodexReviewConfig, load_config
from ..handler import TOOL_NAME, ReviewHandler, tool_definition
from ..process import reap_background
from .loop_thread import LoopThread

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
REAP_TIMEOUT_S = 5.0


def _jsonrpc_error(code: int, message: str, *, request_id: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _jsonrpc_result(result: Any, *, request_id: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


class MessageStream:
    """
    JSON-RPC message framing over a pair of binary streams.

    MCP clients vary on stdio framing. Some use LSP-style Content-Length
    headers, others send newline-delimited JSON. The framing is detected from
    the first message received and replies use the same framing.
    """

    def __init__(self, stdin: Any, stdout: Any):
        self.stdin = stdin
        self.stdout = stdout
        self.use_lsp_framing: bool | None = None
        # Responses come from the reader thread and from the loop thread.
        self._write_lock = threading.Lock()

    def read(self) -> dict[str, Any] | None:
        """Read one message. Returns None at end of input."""
        first = self.stdin.readline()
        while first and not first.strip():
            first = self.stdin.readline()
        if not first:
            return None

        is_framed = first.lower().startswith(b"content-length:")
        if self.use_lsp_framing is None:
            self.use_lsp_framing = is_framed
        if not is_framed:
            return json.loads(first.decode("utf-8"))

        length = self._read_content_length(first)
        if length <= 0:
            return None
        return json.loads(self.stdin.read(length).decode("utf-8"))

    def _read_content_length(self, first: bytes) -> int:
        """Consume the header block starting at `first`; header names are case-insensitive."""
        length = 0
        line = first
        while line and line.strip():
            name, sep, value = line.decode("ascii", errors="ignore").partition(":")
            if sep and name.strip().lower() == "content-length":
                try:
                    length = int(value.strip())
                except ValueError:
                    length = 0
            line = self.stdin.readline()
        return length

    def write(self, message: dict[str, Any]) -> None:
        body = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

        # Nothing read yet: fall back to Content-Length framing.
        use_lsp = True if self.use_lsp_framing is None else self.use_lsp_framing

        if use_lsp:
            frame = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body
        else:
            frame = body + b"\n"
        with self._write_lock:
            self.stdout.write(frame)
            self.stdout.flush()


def _server_info() -> dict[str, Any]:
    return {"name": "codex-review", "version": __version__}


class CodexReviewServer:
    """
    Dispatches MCP requests to a ReviewHandler.

    Tool calls run concurrently on the loop thread and answer when they
    finish; every other method is answered inline, so `ping` and friends
    are never queued behind a running review.
    """

    def __init__(self, handler: ReviewHandler, loop_thread: LoopThread | None = None):
        self.handler = handler
        self.loop_thread = loop_thread or LoopThread()
        self.initialized = False
        self._in_flight: list[concurrent.futures.Future[dict[str, Any]]] = []

    def _tool_defs(self) -> list[dict[str, Any]]:
        return [tool_definition(self.handler.config.default_model)]

    def _submit_tool_call(self, params: Any) -> concurrent.futures.Future[dict[str, Any]]:
        """Validate the call envelope and start the handler. Raises ValueError on bad params."""
        if not self.initialized:
            raise ValueError("Server not initialized")
        if not isinstance(params, dict):
            raise ValueError("params must be an object")
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(tool_name, str):
            raise ValueError("tools/call requires name")
        if not isinstance(arguments, dict):
            raise ValueError("tools/call arguments must be an object")
        if tool_name != TOOL_NAME:
            raise ValueError(f"Unknown tool: {tool_name}")
        return self.loop_thread.submit(self.handler.handle(arguments))

    @staticmethod
    def _tool_call_response(future: concurrent.futures.Future[dict[str, Any]], *, request_id: Any) -> dict[str, Any]:
        try:
            return _jsonrpc_result(future.result(), request_id=request_id)
        except ValueError as e:
            return _jsonrpc_error(-32602, str(e), request_id=request_id)
        except Exception as e:
            logger.exception("Unhandled error in tools/call")
            return _jsonrpc_error(-32603, str(e), request_id=request_id)

    def _start_tool_call(self, msg: dict[str, Any], stream: MessageStream) -> None:
        request_id = msg["id"]
        try:
            future = self._submit_tool_call(msg.get("params") or {})
        except ValueError as e:
            stream.write(_jsonrpc_error(-32602, str(e), request_id=request_id))
            return

        def _reply(done: concurrent.futures.Future[dict[str, Any]]) -> None:
            stream.write(self._tool_call_response(done, request_id=request_id))

        self._in_flight = [f for f in self._in_flight if not f.done()]
        self._in_flight.append(future)
        future.add_done_callback(_reply)

    def handle_message(self, msg: dict[str, Any]) -> dict[str, Any] | None:
        """
        Handle one decoded message and return the response, or None for
        notifications. A tools/call blocks here until the review finishes.
        """
        request_id = msg.get("id")
        method = msg.get("method")
        params = msg.get("params") or {}

        # Notifications (no id) must not receive responses.
        if request_id is None:
            return None

        try:
            if method == "initialize":
                self.initialized = True
                requested_version = None
                if isinstance(params, dict):
                    requested_version = params.get("protocolVersion")
                protocol_version = (
                    requested_version.strip()
                    if isinstance(requested_version, str) and requested_version.strip()
                    else DEFAULT_PROTOCOL_VERSION
                )
                result = {
                    "protocolVersion": protocol_version,
                    "capabilities": {"tools": {"listChanged": False}},
                    "serverInfo": _server_info(),
                }
                return _jsonrpc_result(result, request_id=request_id)

            if method == "ping":
                return _jsonrpc_result({}, request_id=request_id)

            if method == "shutdown":
                return _jsonrpc_result(None, request_id=request_id)

            if method == "tools/list":
                return _jsonrpc_result({"tools": self._tool_defs()}, request_id=request_id)

            if method == "tools/call":
                return self._tool_call_response(self._submit_tool_call(params), request_id=request_id)

            return _jsonrpc_error(-32601, f"Method not found: {method}", request_id=request_id)

        except ValueError as e:
            return _jsonrpc_error(-32602, str(e), request_id=request_id)
        except Exception as e:
            logger.exception(f"Unhandled error in {method}")
            return _jsonrpc_error(-32603, str(e), request_id=request_id)

    def serve(self, stream: MessageStream) -> int:
        """
        Run until end of input or an `exit` notification.

        Calls still running at that point are answered before returning.
        """
        try:
            while True:
                try:
                    msg = stream.read()
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    stream.write(_jsonrpc_error(-32700, f"Parse error: {e}", request_id=None))
                    continue
                if msg is None:
                    return 0
                if not isinstance(msg, dict):
                    stream.write(_jsonrpc_error(-32600, "Invalid Request", request_id=None))
                    continue
                if msg.get("id") is None and msg.get("method") == "exit":
                    return 0

                if msg.get("method") == "tools/call" and msg.get("id") is not None:
                    self._start_tool_call(msg, stream)
                    continue

                response = self.handle_message(msg)
                if response is not None:
                    stream.write(response)
        finally:
            concurrent.futures.wait(self._in_flight)
            if self.loop_thread.running:
                self.loop_thread.run(reap_background(timeout=REAP_TIMEOUT_S))
            self.loop_thread.shutdown()


def run_stdio_server(config: CodexReviewConfig) -> int:
    """Serve codex_review over this process's stdin/stdout."""
    if not config.has_api_key:
        logger.warning(f"{API_KEY_ENV} not set in environment")

    server = CodexReviewServer(ReviewHandler(config))
    logger.info("Codex MCP server running on stdio")
    return server.serve(MessageStream(sys.stdin.buffer, sys.stdout.buffer))


def main() -> int:
    logging.basicConfig(stream=sys.stderr, level=logging.INFO)
    return run_stdio_server(load_config())


if __name__ == "__main__":
    raise SystemExit(main())
