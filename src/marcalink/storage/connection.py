"""Persistent websocket connection to the storage server.

Manages the client side of the wire protocol: connect/reconnect loop,
connection state, a broadcast "opened" notification, and correlation of
replies to pending requests by id.

State machine: DISCONNECTED -> CONNECTING -> OPEN -> CLOSING -> DISCONNECTED
(a dropped socket goes straight from OPEN back to DISCONNECTED and the
reconnect loop tries again after ``reconnect_delay``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from marcalink.protocol import (
    ProtocolError,
    Reply,
    Request,
    format_request,
    new_request_id,
    parse_reply,
)

logger = logging.getLogger(__name__)

# Called (as a task) every time the connection enters OPEN
OpenListener = Callable[[], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class Connection:
    """Websocket client with request/reply correlation."""

    def __init__(self, url: str, *, reconnect_delay: float = 2.0) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._state = ConnectionState.DISCONNECTED
        self._ws: ClientConnection | None = None
        self._opened = asyncio.Event()
        self._pending: dict[str, asyncio.Future[Reply]] = {}
        self._listeners: list[OpenListener] = []
        self._listener_tasks: set[asyncio.Task] = set()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    def add_open_listener(self, listener: OpenListener) -> None:
        self._listeners.append(listener)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background connect/read loop. Idempotent."""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="marcalink-connection")

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        if self._task is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._set_state(ConnectionState.CLOSING)
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_pending("Connection closed")
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_open(self, timeout: float = 5.0) -> bool:
        """Wait until OPEN. Returns False if ``timeout`` elapses first.

        Any number of callers may wait at once; all are released together.
        """
        if self.is_open:
            return True
        try:
            await asyncio.wait_for(self._opened.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out after %.1fs waiting for %s", timeout, self.url)
            return False
        return True

    # ── Requests ──────────────────────────────────────────────

    async def request(self, act: str, payload: dict[str, Any] | None = None) -> Reply:
        """Send one request and wait for the reply carrying the same id.

        Raises ConnectionError if the socket is not open or drops before
        the reply arrives.
        """
        ws = self._ws
        if not self.is_open or ws is None:
            raise ConnectionError("WebSocket not connected")

        request = Request(act=act, payload=payload or {}, id=new_request_id())
        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            data = format_request(request)
            logger.debug("> %s", data[:200])
            await ws.send(data)
            return await future
        except ConnectionClosed as e:
            raise ConnectionError(f"Connection lost during {act}") from e
        finally:
            self._pending.pop(request.id, None)

    # ── Internal ──────────────────────────────────────────────

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.info("Connection %s: %s -> %s", self.url, self._state.value, state.value)
        self._state = state
        if state is ConnectionState.OPEN:
            self._opened.set()
        else:
            self._opened.clear()

    async def _run(self) -> None:
        while True:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with connect(self.url) as ws:
                    self._ws = ws
                    self._set_state(ConnectionState.OPEN)
                    self._notify_open()
                    async for message in ws:
                        self._handle_message(message)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Connection to %s failed: %s", self.url, e)
            except Exception:
                logger.exception("Connection loop error on %s", self.url)
            finally:
                self._ws = None
                if self._state is not ConnectionState.CLOSING:
                    self._set_state(ConnectionState.DISCONNECTED)
                self._fail_pending("Connection lost")
            await asyncio.sleep(self.reconnect_delay)

    def _handle_message(self, message: str | bytes) -> None:
        try:
            reply = parse_reply(message)
        except ProtocolError as e:
            logger.warning("Discarding malformed reply: %s", e)
            return
        logger.debug("< %s %s (%s)", reply.act, reply.status, reply.id)

        future = self._pending.get(reply.id) if isinstance(reply.id, str) else None
        if future is None or future.done():
            logger.debug("Ignoring unsolicited reply: act=%s", reply.act)
            return
        future.set_result(reply)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))

    def _notify_open(self) -> None:
        for listener in self._listeners:
            task = asyncio.create_task(self._run_listener(listener))
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_tasks.discard)

    async def _run_listener(self, listener: OpenListener) -> None:
        try:
            await listener()
        except Exception:
            logger.exception("Open listener failed")
