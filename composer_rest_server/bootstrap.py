"""
Server bootstrap.

:func:`server` turns a :class:`ComposerConfig` into a Flask application and an
unstarted listener. The steps run in a fixed order::

    configuration -> datasources (connects the business network)
                  -> blueprints (health, auth when security is on, REST API)
                  -> websockets (when enabled)
                  -> listener -> ready

A missing configuration raises immediately. Every other failure is delivered
through the returned future, which is always complete when ``server``
returns.
"""

import json
import logging
import os
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from flask import Flask

from composer_rest_server import listener
from composer_rest_server.app import create_app
from composer_rest_server.blueprints import BlueprintContext, register_blueprints
from composer_rest_server.config import ComposerConfig, EnvironmentSettings
from composer_rest_server.datasources import ComposerConnector, default_datasources, merge_datasources
from composer_rest_server.errors import ConfigurationError, ConfigurationMissingError, FileReadError
from composer_rest_server.listener import Listener, TLSOptions
from composer_rest_server.services.runtime import EmbeddedRuntime
from composer_rest_server.utils.logging import get_logger
from composer_rest_server.websocket import init_websockets

logger = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    app: Flask
    server: Listener

    def close(self) -> None:
        """Stop the listener and disconnect the datasources, detaching event listeners."""
        self.server.shutdown()
        self.app.data_sources.close()


def _read_file(fs: Any, path: str) -> str:
    try:
        return fs.read_text(path, encoding='utf-8')
    except OSError as e:
        raise FileReadError(path, e.strerror or str(e)) from e


def _bootstrap(composer: Union[ComposerConfig, Mapping[str, Any]], environ: Mapping[str, str],
               runtime: Optional[EmbeddedRuntime]) -> BootstrapResult:
    if not isinstance(composer, ComposerConfig):
        composer = ComposerConfig.from_dict(composer)

    settings = EnvironmentSettings.from_environ(environ)
    log = get_logger(__name__).bind(
        profile=composer.connection_profile_name,
        business_network=composer.business_network_identifier
    )

    app = create_app(composer, settings, runtime)
    try:
        for name, datasource in merge_datasources(default_datasources(composer), settings.datasources).items():
            app.data_sources.register(name, datasource)

        composer_datasource = app.data_sources.get('composer')
        if composer_datasource is None or composer_datasource.connector_name != ComposerConnector.name:
            raise ConfigurationError("The composer datasource must use the composer connector")
        connection = composer_datasource.connector.connection
        app.extensions['composer'] = connection

        register_blueprints(app, BlueprintContext(composer, settings, connection))

        if composer.websockets:
            wss = init_websockets(app)
            connection.on_event(lambda event: wss.broadcast(json.dumps(event, default=str)))

        if composer.tls:
            tls_options = TLSOptions(
                cert=_read_file(composer.fs, composer.tlscert),
                key=_read_file(composer.fs, composer.tlskey)
            )
            http_server = listener.create_secure_server(tls_options, app)
        else:
            http_server = listener.create_server(app)
    except Exception:
        app.data_sources.close()
        raise

    log.info(
        'bootstrap_complete',
        port=app.config['PORT'],
        tls=composer.tls,
        security=composer.security,
        websockets=composer.websockets,
        datasources=list(app.data_sources)
    )
    return BootstrapResult(app=app, server=http_server)


def server(composer: Union[ComposerConfig, Mapping[str, Any], None],
           environ: Optional[Mapping[str, str]] = None,
           runtime: Optional[EmbeddedRuntime] = None) -> 'Future[BootstrapResult]':
    """
    Bootstrap the REST server.

    Args:
        composer: bootstrap configuration, or a mapping accepted by
            :meth:`ComposerConfig.from_dict`
        environ: environment to read ``COMPOSER_DATASOURCES``,
            ``COMPOSER_PROVIDERS`` and ``FLASK_CONFIG`` from, read once;
            defaults to ``os.environ``
        runtime: embedded runtime hosting business networks, defaults to the
            process-wide one

    Returns:
        A completed future holding a :class:`BootstrapResult`, or the
        exception that stopped the bootstrap

    Raises:
        ConfigurationMissingError: if ``composer`` is not given
    """
    if not composer:
        raise ConfigurationMissingError()

    future: 'Future[BootstrapResult]' = Future()
    try:
        result = _bootstrap(composer, os.environ if environ is None else environ, runtime)
    except Exception as e:
        logger.error(f"Server bootstrap failed: {e}")
        future.set_exception(e)
    else:
        future.set_result(result)
    return future


__all__ = ['BootstrapResult', 'server']
