"""A reconnecting websocket client driven from a single thread."""

from __future__ import annotations

import logging
import select
import socket
import threading
from collections.abc import Callable
from typing import Any

import websocket

log = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class WSConnection:
    """Client connection whose callbacks all run in the thread calling ``run``.

    ``trigger`` may be called from any thread; it makes ``on_trigger`` run in
    the connection thread. ``close`` stops ``run`` from any thread.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.on_connect: Callable[[], None] | None = None
        self.on_message: Callable[[Any, int], None] | None = None
        self.on_trigger: Callable[[], None] | None = None
        self.on_disconnect: Callable[[], None] | None = None
        self.on_error: Callable[[], None] | None = None
        self.reconnect = True
        self.reconnect_delay_ms = 5000
        self.connect_timeout = 5.0
        self.remote_addr = ""

        self._shutdown = threading.Event()
        self._triggered = threading.Event()
        self._running = False
        self._ws: websocket.WebSocket | None = None

    @property
    def shutdown(self) -> bool:
        return self._shutdown.is_set()

    def close(self) -> None:
        self._shutdown.set()
        self.trigger()

    def send(self, msg: str | bytes) -> None:
        """Send a message; call only from the connection thread."""
        ws = self._ws
        if ws is None:
            log.info("Tried to send message, but websocket is disconnected")
            return
        if isinstance(msg, (bytes, bytearray, memoryview)):
            ws.send_binary(bytes(msg))
        else:
            ws.send(msg)

    def trigger(self) -> None:
        if self._running:
            self._triggered.set()

    def run(self) -> None:
        """Connect and process events until closed or, without reconnect, lost."""
        self._running = True
        try:
            delay_ms = 0
            while True:
                if delay_ms:
                    self._shutdown.wait(delay_ms / 1000)
                if self._shutdown.is_set():
                    return

                log.info("Attempting to connect to %s", self.url)
                try:
                    ws = websocket.create_connection(
                        self.url,
                        timeout=self.connect_timeout,
                        sockopt=((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1),),
                    )
                except (OSError, websocket.WebSocketException):
                    log.info("Websocket connection error")
                    if self.on_error is not None:
                        self.on_error()
                    if not self.reconnect:
                        return
                    delay_ms = self.reconnect_delay_ms
                    continue

                if not self._serve(ws):
                    return

                if self.on_disconnect is not None:
                    self.on_disconnect()
                if not self.reconnect:
                    return
                delay_ms = self.reconnect_delay_ms
        finally:
            self._running = False
            self._terminate()

    def _serve(self, ws: websocket.WebSocket) -> bool:
        """Run one connection; False if stopped by shutdown, True if lost."""
        self._ws = ws
        try:
            self.remote_addr = ws.sock.getpeername()[0]
        except (OSError, AttributeError, IndexError):
            self.remote_addr = ""
        log.info("Connected to %s (%s)", self.url, self.remote_addr)

        if self._shutdown.is_set():
            return False
        self._guarded("onConnect", self.on_connect)

        while True:
            if self._shutdown.is_set():
                return False

            if self._triggered.is_set():
                self._triggered.clear()
                self._guarded("onTrigger", self.on_trigger)
                continue

            sock = ws.sock
            if sock is None:
                return self._lost(ws, "connection closed")
            if not self._readable(sock):
                continue

            try:
                opcode, data = ws.recv_data()
            except (OSError, websocket.WebSocketException) as exc:
                return self._lost(ws, str(exc) or "-")

            if opcode == websocket.ABNF.OPCODE_CLOSE:
                return self._lost(ws, "close frame")

            msg: Any = data
            if opcode == websocket.ABNF.OPCODE_TEXT and isinstance(data, (bytes, bytearray)):
                msg = bytes(data).decode("utf-8", errors="replace")
            self._guarded("onMessage", self.on_message, msg, opcode)

    @staticmethod
    def _readable(sock: socket.socket) -> bool:
        pending = getattr(sock, "pending", None)
        if pending is not None and pending():
            return True
        try:
            readable, _, _ = select.select([sock], [], [], _POLL_INTERVAL)
        except (OSError, ValueError):
            return True
        return bool(readable)

    def _lost(self, ws: websocket.WebSocket, reason: str) -> bool:
        log.info("Disconnected from %s : %s", self.url, reason)
        self._ws = None
        try:
            ws.close(timeout=1)
        except (OSError, websocket.WebSocketException):
            pass
        return True

    @staticmethod
    def _guarded(what: str, cb: Callable[..., None] | None, *args: Any) -> None:
        if cb is None:
            return
        try:
            cb(*args)
        except Exception as exc:  # callbacks must not bring down the loop
            log.warning("%s failure: %s", what, exc)

    def _terminate(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close(timeout=1)
            except (OSError, websocket.WebSocketException):
                pass