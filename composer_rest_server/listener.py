"""
HTTP and HTTPS listeners.

``create_server(app)`` and ``create_secure_server(tls_options, app)`` are the
two listener factories the bootstrap chooses between. A listener does not bind
its socket until :meth:`Listener.serve_forever` is called; host and port are
taken from the application's ``HOST`` and ``PORT`` settings at that point.

Serving uses werkzeug's threaded WSGI server, which flask-sock's WebSocket
routes run on as well.
"""

import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Optional

from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TLSOptions:
    """PEM encoded certificate chain and private key."""
    cert: str
    key: str

    def ssl_context(self) -> ssl.SSLContext:
        """
        Build a server-side SSL context from the PEM text.

        ``SSLContext.load_cert_chain`` only accepts paths, so the material is
        written to a private temporary directory that is removed once loaded.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        with tempfile.TemporaryDirectory(prefix='composer-tls-') as directory:
            cert_path = os.path.join(directory, 'cert.pem')
            key_path = os.path.join(directory, 'key.pem')
            with open(cert_path, 'w', encoding='utf-8') as handle:
                handle.write(self.cert)
            with open(key_path, 'w', encoding='utf-8') as handle:
                handle.write(self.key)
            os.chmod(key_path, 0o600)
            context.load_cert_chain(cert_path, key_path)
        return context

    def __repr__(self) -> str:
        return 'TLSOptions(cert=<pem>, key=<redacted>)'


class Listener:
    """An HTTP(S) listener bound to a Flask application."""

    def __init__(self, app: Flask, tls_options: Optional[TLSOptions] = None):
        self.app = app
        self.tls_options = tls_options
        self._server: Optional[BaseWSGIServer] = None
        self._serving = False

    @property
    def secure(self) -> bool:
        return self.tls_options is not None

    @property
    def host(self) -> str:
        return self.app.config.get('HOST', '0.0.0.0')

    @property
    def port(self) -> int:
        if self._server is not None:
            return self._server.server_port
        return self.app.config['PORT']

    @property
    def url(self) -> str:
        scheme = 'https' if self.secure else 'http'
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def listening(self) -> bool:
        return self._server is not None

    def bind(self) -> BaseWSGIServer:
        """Bind the listening socket without starting to serve."""
        if self._server is None:
            ssl_context = self.tls_options.ssl_context() if self.tls_options else None
            self._server = make_server(
                self.host,
                self.app.config['PORT'],
                self.app,
                threaded=True,
                ssl_context=ssl_context
            )
            logger.info(f"Listener bound on {self.url}")
        return self._server

    def serve_forever(self) -> None:
        server = self.bind()
        logger.info(f"Web server listening at: {self.url}")
        self._serving = True
        try:
            server.serve_forever()
        finally:
            self._serving = False
            server.server_close()
            self._server = None

    def shutdown(self) -> None:
        """Stop serving, or release the socket of a listener that is bound but not serving."""
        if self._server is None:
            return
        if self._serving:
            self._server.shutdown()
        else:
            self._server.server_close()
            self._server = None
        logger.info("Listener shut down")


def create_server(app: Flask) -> Listener:
    """Create a plain HTTP listener for ``app``."""
    return Listener(app)


def create_secure_server(tls_options: TLSOptions, app: Flask) -> Listener:
    """Create an HTTPS listener for ``app`` using ``tls_options``."""
    return Listener(app, tls_options=tls_options)
