"""
WebSocket broadcast support.

When WebSockets are enabled, a :class:`SocketServer` is attached to the
application as ``app.extensions['wss']``. Clients connect on
``WEBSOCKET_PATH`` (flask-sock route); the connection handler keeps the client
set current, and :meth:`SocketServer.broadcast` pushes a message to every
client whose state is :attr:`ConnectionState.OPEN`.
"""

import enum
import logging
import threading
from typing import Any, List, Set

from flask import Flask, request
from flask_sock import Sock
from simple_websocket import ConnectionClosed

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class ClientConnection:
    """A connected WebSocket client and its connection state."""

    def __init__(self, ws: Any, remote_addr: str = None):
        self._ws = ws
        self.remote_addr = remote_addr
        self.ready_state = ConnectionState.CONNECTING

    def open(self) -> None:
        self.ready_state = ConnectionState.OPEN

    def send(self, message: str) -> None:
        try:
            self._ws.send(message)
        except (ConnectionClosed, OSError):
            self.ready_state = ConnectionState.CLOSED
            raise

    def receive(self, timeout: float = None):
        return self._ws.receive(timeout=timeout)

    def close(self) -> None:
        if self.ready_state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.ready_state = ConnectionState.CLOSING
        try:
            self._ws.close()
        except ConnectionClosed:
            pass
        self.ready_state = ConnectionState.CLOSED

    def __repr__(self) -> str:
        return f"ClientConnection({self.remote_addr!r}, {self.ready_state.name})"


class SocketServer:
    """Tracks WebSocket clients of one application and broadcasts to them."""

    def __init__(self, path: str = '/'):
        self.path = path
        self.clients: Set[ClientConnection] = set()
        self._lock = threading.Lock()

    def add(self, client: ClientConnection) -> None:
        with self._lock:
            self.clients.add(client)
        logger.debug(f"WebSocket client connected: {client!r}")

    def discard(self, client: ClientConnection) -> None:
        with self._lock:
            self.clients.discard(client)
        logger.debug(f"WebSocket client disconnected: {client!r}")

    def broadcast(self, message: str) -> int:
        """
        Send ``message`` to every open client.

        Clients that are still connecting, closing or closed are skipped. A
        client whose send fails is marked closed and the broadcast moves on.
        The client set itself is not modified.

        Returns:
            Number of clients the message was sent to
        """
        with self._lock:
            clients: List[ClientConnection] = list(self.clients)

        sent = 0
        for client in clients:
            if client.ready_state != ConnectionState.OPEN:
                continue
            try:
                client.send(message)
            except ConnectionClosed:
                logger.warning(f"Skipping closed WebSocket client {client!r}")
                continue
            except OSError as e:
                logger.warning(f"Skipping WebSocket client {client!r} after send failure: {e}")
                continue
            sent += 1
        logger.debug(f"Broadcast message to {sent} client(s)")
        return sent

    @property
    def open_clients(self) -> Set[ClientConnection]:
        with self._lock:
            return {c for c in self.clients if c.ready_state == ConnectionState.OPEN}


def init_websockets(app: Flask) -> SocketServer:
    """Attach a socket server to ``app`` and register its connection route."""
    path = app.config.get('WEBSOCKET_PATH', '/')
    wss = SocketServer(path)
    sock = Sock(app)

    @sock.route(path)
    def websocket_connection(ws):
        client = ClientConnection(ws, remote_addr=request.remote_addr)
        wss.add(client)
        client.open()
        try:
            # Inbound messages are ignored; the loop ends when the peer closes.
            while True:
                client.receive()
        except ConnectionClosed:
            pass
        finally:
            client.close()
            wss.discard(client)

    app.extensions['wss'] = wss
    app.extensions['sock'] = sock
    logger.info(f"WebSockets enabled on {path}")
    return wss
