"""
HTTP server for the DocAnchor API.

Uses stdlib http.server with one thread per request.
Routes requests to handler functions in handlers.py.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from docanchor import API_DEFAULT_HOST, API_DEFAULT_PORT, API_MAX_BODY_BYTES
from docanchor.api.handlers import (
    handle_balance,
    handle_health,
    handle_record_on_chain,
    handle_transaction,
)

logger = logging.getLogger(__name__)

_TRANSACTION_RE = re.compile(r"^/api/transaction/([^/]+)$")


class DocAnchorAPIHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the DocAnchor API.

    The service context is attached to the server instance and accessed
    via self.server.ctx.
    """

    # stderr access log goes to logging
    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(format, *args)

    def _send_json(self, status: int, data: dict) -> None:
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def _not_found(self, path: str) -> None:
        self._send_json(404, {"error": "Not found", "path": path, "method": self.command})

    def _dispatch(self, route) -> None:
        try:
            code, data = route()
        except Exception:
            logger.exception("Unhandled error for %s %s", self.command, self.path)
            code, data = 500, {
                "error": "Internal server error",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        self._send_json(code, data)

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:
        path = self.path.split("?")[0]  # strip query string
        ctx = self.server.ctx  # type: ignore[attr-defined]

        if path == "/health":
            self._dispatch(lambda: handle_health(ctx))
            return

        if path == "/api/account/balance":
            self._dispatch(lambda: handle_balance(ctx))
            return

        m = _TRANSACTION_RE.match(path)
        if m:
            self._dispatch(lambda: handle_transaction(m.group(1), ctx))
            return

        self._not_found(path)

    def do_POST(self) -> None:
        path = self.path.split("?")[0]
        ctx = self.server.ctx  # type: ignore[attr-defined]
        stopping = self.server.stopping  # type: ignore[attr-defined]

        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            length = 0
        if length > API_MAX_BODY_BYTES:
            self.close_connection = True
            self._send_json(413, {"error": f"Payload too large (max {API_MAX_BODY_BYTES} bytes)"})
            return
        # Always read the body first to avoid connection resets
        body = self.rfile.read(length) if length > 0 else b""

        if path == "/api/record-on-chain":
            self._dispatch(lambda: handle_record_on_chain(body, ctx, stopping))
            return

        self._not_found(path)


class DocAnchorAPIServer(ThreadingHTTPServer):
    """ThreadingHTTPServer subclass that carries the service context.

    ``stopping`` is set on shutdown; in-flight confirmation waits watch it
    and give up between rounds.
    """

    daemon_threads = True

    def __init__(self, address: tuple[str, int], ctx: Any) -> None:
        super().__init__(address, DocAnchorAPIHandler)
        self.ctx = ctx
        self.stopping = threading.Event()

    def shutdown(self) -> None:
        self.stopping.set()
        super().shutdown()

    def server_close(self) -> None:
        self.stopping.set()
        super().server_close()


def run_api(
    ctx: Any,
    host: str = API_DEFAULT_HOST,
    port: int = API_DEFAULT_PORT,
) -> None:
    """Start the DocAnchor API server (blocking).

    Args:
        ctx: ServiceContext with signer and probed endpoint selector
        host: Bind address (default 127.0.0.1)
        port: Listen port (default 3001)
    """
    server = DocAnchorAPIServer((host, port), ctx)

    state = ctx.selector.state
    if not state.is_active:
        logger.warning("Starting server without Algorand connection (demo mode)")

    print(f"DocAnchor API listening on http://{host}:{port}")
    print(f"  server account: {ctx.server_address}")
    print(f"  ledger:         {state.endpoint.name if state.endpoint else 'demo mode'}")
    print("  POST /api/record-on-chain  — anchor upload metadata")
    print("  GET  /api/transaction/<id> — read anchored metadata")
    print("  GET  /api/account/balance  — signing account balance")
    print("  GET  /health               — liveness probe")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        server.server_close()
