"""Unit tests for the HTTP(S) listeners."""

import ssl
from unittest.mock import patch

import pytest
from flask import Flask

from composer_rest_server.listener import Listener, TLSOptions, create_secure_server, create_server


@pytest.fixture
def flask_app():
    app = Flask(__name__)
    app.config.update(HOST='127.0.0.1', PORT=4321)
    return app


class TestTLSOptions:

    def test_ssl_context_loads_pem_text(self, tls_material):
        options = TLSOptions(cert=tls_material['cert'], key=tls_material['key'])

        context = options.ssl_context()

        assert isinstance(context, ssl.SSLContext)

    def test_mismatched_material_fails(self, tls_material):
        options = TLSOptions(cert=tls_material['cert'], key='not a key')

        with pytest.raises(ssl.SSLError):
            options.ssl_context()

    def test_repr_hides_key(self, tls_material):
        assert tls_material['key'] not in repr(TLSOptions(cert=tls_material['cert'], key=tls_material['key']))


class TestListener:

    def test_create_server(self, flask_app):
        listener = create_server(flask_app)

        assert listener.app is flask_app
        assert listener.secure is False
        assert listener.url == 'http://127.0.0.1:4321'
        assert listener.listening is False

    def test_create_secure_server(self, flask_app, tls_material):
        options = TLSOptions(cert=tls_material['cert'], key=tls_material['key'])

        listener = create_secure_server(options, flask_app)

        assert listener.tls_options is options
        assert listener.url == 'https://127.0.0.1:4321'

    def test_bind_uses_threaded_server(self, flask_app):
        with patch('composer_rest_server.listener.make_server') as make_server:
            make_server.return_value.server_port = 4321
            listener = Listener(flask_app)
            listener.bind()

        make_server.assert_called_once_with('127.0.0.1', 4321, flask_app, threaded=True, ssl_context=None)
        assert listener.listening is True

    def test_bind_with_tls_passes_context(self, flask_app, tls_material):
        options = TLSOptions(cert=tls_material['cert'], key=tls_material['key'])
        with patch('composer_rest_server.listener.make_server') as make_server:
            Listener(flask_app, options).bind()

        assert isinstance(make_server.call_args.kwargs['ssl_context'], ssl.SSLContext)

    def test_serve_forever_closes_socket(self, flask_app):
        with patch('composer_rest_server.listener.make_server') as make_server:
            listener = Listener(flask_app)
            listener.serve_forever()

        make_server.return_value.serve_forever.assert_called_once_with()
        make_server.return_value.server_close.assert_called_once_with()
        assert listener.listening is False

    def test_shutdown_without_server(self, flask_app):
        Listener(flask_app).shutdown()

    def test_shutdown_of_bound_listener_releases_socket(self, flask_app):
        with patch('composer_rest_server.listener.make_server') as make_server:
            listener = Listener(flask_app)
            listener.bind()

            listener.shutdown()

        make_server.return_value.shutdown.assert_not_called()
        make_server.return_value.server_close.assert_called_once_with()
        assert listener.listening is False

    def test_shutdown_while_serving_stops_the_loop(self, flask_app):
        with patch('composer_rest_server.listener.make_server') as make_server:
            listener = Listener(flask_app)
            make_server.return_value.serve_forever.side_effect = lambda: listener.shutdown()

            listener.serve_forever()

        make_server.return_value.shutdown.assert_called_once_with()
        assert listener.listening is False
