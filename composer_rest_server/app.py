"""
Flask application factory.

:func:`create_app` builds the bare application for one bootstrap: Flask
configuration, logging, JSON error handlers, request context (timing, security
and CORS headers) and an empty datasource registry on ``app.data_sources``.
Datasources, blueprints and WebSockets are attached afterwards by
:func:`composer_rest_server.bootstrap.server`, which owns the bootstrap order.
"""

import logging
import time
import uuid
from typing import Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from composer_rest_server.config import ComposerConfig, EnvironmentSettings, get_config
from composer_rest_server.datasources import DataSourceRegistry
from composer_rest_server.errors import ComposerServerError
from composer_rest_server.services.runtime import EmbeddedRuntime
from composer_rest_server.utils.logging import configure_logging

logger = logging.getLogger(__name__)

_HTTP_ERRORS = {
    400: ('Bad Request', 'The request could not be understood by the server'),
    401: ('Unauthorized', 'Authentication required'),
    403: ('Forbidden', 'Access denied'),
    404: ('Not Found', 'The requested resource was not found'),
    405: ('Method Not Allowed', 'The method is not allowed for the requested URL'),
}


def register_error_handlers(app: Flask) -> None:
    """Answer HTTP and composer errors with JSON bodies."""

    def http_error(error: HTTPException):
        title, message = _HTTP_ERRORS[error.code]
        if error.code in (401, 403):
            logger.warning(f"{title}: {request.url} from {request.remote_addr}")
        else:
            logger.debug(f"{title}: {request.url}")
        return jsonify({
            'error': title,
            'message': message,
            'status_code': error.code
        }), error.code

    for code in _HTTP_ERRORS:
        app.register_error_handler(code, http_error)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        body = {
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500
        }
        if app.debug:
            body['debug_info'] = str(getattr(error, 'original_exception', error))
        return jsonify(body), 500

    @app.errorhandler(ComposerServerError)
    def composer_error(error: ComposerServerError):
        if error.status_code >= 500:
            logger.error(f"{error.error_code}: {error.message}")
        else:
            logger.info(f"{error.error_code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code


def configure_request_context(app: Flask) -> None:
    """Request ids, timing, security headers and CORS."""

    @app.before_request
    def before_request():
        g.request_start_time = time.time()
        g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex

    @app.after_request
    def after_request(response):
        if hasattr(g, 'request_start_time'):
            request_duration = time.time() - g.request_start_time
            response.headers['X-Response-Time'] = f"{request_duration:.3f}s"
            if request_duration > 1.0:
                logger.warning(
                    f"Slow request: {request.method} {request.url} "
                    f"took {request_duration:.3f}s"
                )
        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        if app.config.get('CORS_ENABLED', False):
            _apply_cors_headers(app, response)
        return response


def _apply_cors_headers(app: Flask, response) -> None:
    """
    Without ``CORS_ORIGINS`` any origin may read responses, but never with
    credentials. Listed origins are echoed back and may send the session cookie;
    other origins get no CORS headers.
    """
    origin = request.headers.get('Origin')
    allowed_origins = app.config.get('CORS_ORIGINS') or ()
    if not allowed_origins:
        response.headers['Access-Control-Allow-Origin'] = '*'
    elif origin in allowed_origins:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
        response.vary.add('Origin')
    else:
        return
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'


def create_app(composer: ComposerConfig, settings: Optional[EnvironmentSettings] = None,
               runtime: Optional[EmbeddedRuntime] = None) -> Flask:
    """
    Create the Flask application for ``composer``.

    Args:
        composer: bootstrap configuration
        settings: environment snapshot; only ``config_name`` is used here
        runtime: embedded runtime hosting business networks, defaults to the
            process-wide one

    Returns:
        Flask application with ``PORT``, ``COMPOSER_SECURITY`` and
        ``LOGIN_DISABLED`` set from ``composer``
    """
    settings = settings or EnvironmentSettings()

    app = Flask('composer_rest_server')
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    config_class = get_config(settings.config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    app.config['PORT'] = composer.resolved_port
    app.config['COMPOSER_SECURITY'] = bool(composer.security)
    app.config['COMPOSER_NAMESPACES'] = composer.namespaces
    # Flask-Login honours this for login_required views.
    app.config['LOGIN_DISABLED'] = not composer.security
    if composer.tls:
        app.config['SESSION_COOKIE_SECURE'] = True

    configure_logging(app)
    register_error_handlers(app)
    configure_request_context(app)

    app.data_sources = DataSourceRegistry(fs=composer.fs, runtime=runtime)

    logger.info(f"Flask application created with {config_class.__name__} configuration")
    return app


__all__ = ['create_app', 'register_error_handlers', 'configure_request_context']
