"""Storage server process - always-on websocket endpoint.

Usage: python -m marcalink serve

Manages:
- Filesystem store + action dispatcher
- Websocket server (one sequential message loop per connection)
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from marcalink import protocol
from marcalink.config import MarcalinkConfig, load_config
from marcalink.server.dispatcher import ActionDispatcher
from marcalink.storage.filesystem import FilesystemStore

logger = logging.getLogger(__name__)


class StorageDaemon:
    """Serves the filesystem store over websockets."""

    def __init__(self, config: MarcalinkConfig | None = None) -> None:
        self.config = config or load_config()
        self.store = FilesystemStore(self.config.data_dir)
        self.dispatcher = ActionDispatcher(self.store)
        self._shutdown_event = asyncio.Event()
        self._server: Server | None = None

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)
            print(f"marcalink server already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Connection handling ──────────────────────────────────

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Greet, then answer each message in arrival order."""
        peer = websocket.remote_address
        logger.info("Client connected: %s", peer)
        try:
            greeting = protocol.Reply(act=protocol.CONNECTED, status="ok", message="Connection established")
            await websocket.send(protocol.format_reply(greeting))
            async for message in websocket:
                logger.debug("< %s", str(message)[:200])
                reply = await self.dispatcher.dispatch(message)
                logger.debug("> %s", reply[:200])
                await websocket.send(reply)
        except ConnectionClosed:
            pass
        finally:
            logger.info("Client disconnected: %s", peer)

    async def start_server(self) -> Server:
        """Bind the websocket server (port 0 picks a free port)."""
        self._server = await serve(
            self.handle_connection,
            self.config.server.host,
            self.config.server.port,
        )
        return self._server

    @property
    def port(self) -> int | None:
        if not self._server:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def stop_server(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        try:
            await self.start_server()
            logger.info(
                "marcalink server listening on ws://%s:%d (data_dir=%s)",
                self.config.server.host,
                self.port or self.config.server.port,
                self.config.data_dir,
            )
            await self._shutdown_event.wait()
        finally:
            await self.stop_server()
            self._remove_pid()
            logger.info("marcalink server stopped.")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()
