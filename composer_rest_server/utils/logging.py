"""
Structured logging setup for the REST server.

Modules log through the standard library (``logging.getLogger(__name__)``);
bootstrap lifecycle events go through structlog so they carry key/value
context (profile, business network, port, enabled features). Output is
rendered as JSON unless the configuration asks for console output.
"""

import logging
import sys

import structlog
from flask import Flask, g, has_request_context, request
from flask.logging import default_handler


def _add_flask_context(logger, name, event_dict):
    """Add Flask request context to log entries."""
    if has_request_context():
        event_dict.update({
            'request_id': getattr(g, 'request_id', None),
            'endpoint': request.endpoint,
            'method': request.method,
            'path': request.path,
            'ip_address': request.remote_addr,
        })
    return event_dict


def configure_structlog(level: int = logging.INFO, json_output: bool = True) -> None:
    """Configure structlog for structured output at ``level``."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_flask_context,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False)
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=False,
    )


def configure_logging(app: Flask) -> None:
    """
    Configure application and structured logging from the Flask configuration.

    Uses ``LOG_LEVEL``, ``LOG_FORMAT`` and ``LOG_JSON``. The stdout handler is
    installed once per application, so repeated bootstraps do not duplicate
    output.
    """
    log_level_str = app.config.get('LOG_LEVEL', 'INFO')
    log_level = getattr(logging, str(log_level_str).upper(), logging.INFO)

    app.logger.removeHandler(default_handler)
    if not any(getattr(h, '_composer_handler', False) for h in app.logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            app.config.get('LOG_FORMAT', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')
        ))
        console_handler._composer_handler = True
        app.logger.addHandler(console_handler)
    app.logger.setLevel(log_level)
    logging.getLogger('composer_rest_server').setLevel(log_level)

    configure_structlog(log_level, json_output=app.config.get('LOG_JSON', True))
    app.logger.debug(f"Logging configured (level: {log_level_str})")


def get_logger(name: str = 'composer_rest_server'):
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
