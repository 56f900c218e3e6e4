"""Unit tests for WebSocket client tracking and broadcast."""

from unittest.mock import Mock

import pytest
from flask import Flask
from simple_websocket import ConnectionClosed

from composer_rest_server.websocket import ClientConnection, ConnectionState, SocketServer, init_websockets


def make_client(state=ConnectionState.OPEN):
    client = ClientConnection(Mock(), remote_addr='127.0.0.1')
    client.ready_state = state
    return client


class TestClientConnection:

    def test_starts_connecting(self):
        assert ClientConnection(Mock()).ready_state is ConnectionState.CONNECTING

    def test_open_then_close(self):
        ws = Mock()
        client = ClientConnection(ws)
        client.open()
        assert client.ready_state is ConnectionState.OPEN

        client.close()
        client.close()

        assert client.ready_state is ConnectionState.CLOSED
        ws.close.assert_called_once_with()

    def test_send_on_closed_socket_marks_client_closed(self):
        client = make_client()
        client._ws.send.side_effect = ConnectionClosed()

        with pytest.raises(ConnectionClosed):
            client.send('hello')

        assert client.ready_state is ConnectionState.CLOSED


class TestSocketServer:

    def test_broadcast_with_no_clients(self):
        assert SocketServer().broadcast('hello') == 0

    def test_broadcast_skips_clients_that_are_not_open(self):
        wss = SocketServer()
        connecting = make_client(ConnectionState.CONNECTING)
        opened = make_client(ConnectionState.OPEN)
        wss.add(connecting)
        wss.add(opened)

        assert wss.broadcast('hello') == 1

        opened._ws.send.assert_called_once_with('hello')
        connecting._ws.send.assert_not_called()

    def test_broadcast_continues_past_closed_sockets(self):
        """A peer that vanished mid-broadcast does not stop the others."""
        wss = SocketServer()
        vanished = make_client()
        vanished._ws.send.side_effect = ConnectionClosed()
        healthy = make_client()
        wss.add(vanished)
        wss.add(healthy)

        assert wss.broadcast('hello') == 1

        healthy._ws.send.assert_called_once_with('hello')
        assert vanished.ready_state is ConnectionState.CLOSED
        assert wss.clients == {vanished, healthy}

    def test_broadcast_continues_past_socket_errors(self):
        wss = SocketServer()
        broken = make_client()
        broken._ws.send.side_effect = OSError('broken pipe')
        healthy = make_client()
        wss.add(broken)
        wss.add(healthy)

        assert wss.broadcast('hello') == 1

        healthy._ws.send.assert_called_once_with('hello')
        assert broken.ready_state is ConnectionState.CLOSED

    def test_discard(self):
        wss = SocketServer()
        client = make_client()
        wss.add(client)

        wss.discard(client)

        assert wss.clients == set()
        assert wss.open_clients == set()


class TestInitWebsockets:

    def test_registers_websocket_route(self):
        app = Flask(__name__)
        app.config['WEBSOCKET_PATH'] = '/events'

        wss = init_websockets(app)

        assert app.extensions['wss'] is wss
        rules = [r for r in app.url_map.iter_rules() if r.rule == '/events']
        assert len(rules) == 1
        assert rules[0].websocket is True
