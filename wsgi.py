"""
WSGI entry point.

Bootstraps the REST server from the ``COMPOSER_*`` environment variables and
exposes the Flask application for a WSGI server::

    gunicorn --bind 0.0.0.0:3000 --threads 8 wsgi:application

WebSockets need a server that supports flask-sock's threaded mode (gunicorn
with ``--threads``, or ``composer-rest-server start``).
"""

import logging
import os
import sys

from composer_rest_server import ComposerServerError, server
from composer_rest_server.config import ComposerConfig, load_environment_variables

logger = logging.getLogger(__name__)


def create_application():
    load_environment_variables(os.environ.get('COMPOSER_ENV_FILE'))
    try:
        composer = ComposerConfig.from_environ(os.environ)
        return server(composer, os.environ).result().app
    except ComposerServerError as e:
        logger.critical(f"REST server bootstrap failed: {e.message}")
        sys.exit(1)


application = create_application()
app = application
