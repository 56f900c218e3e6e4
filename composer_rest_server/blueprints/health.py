"""
Status and health endpoints.

``GET /`` reports when the server started and how long it has been up.
``GET /health`` reports the state of the business network connection and the
optional subsystems, answering 503 when the network cannot be pinged.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from flask import Blueprint, Flask, current_app, jsonify

from composer_rest_server.errors import ComposerServerError

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__)


def _composer_status() -> Dict[str, Any]:
    datasource = current_app.data_sources.get('composer')
    if datasource is None:
        return {'status': 'unavailable', 'error': 'no composer datasource'}
    try:
        ping = datasource.connector.connection.ping()
    except ComposerServerError as e:
        logger.warning(f"Business network ping failed: {e.message}")
        return {'status': 'unhealthy', 'error': e.message}
    return {'status': 'healthy', 'ping': ping}


@health_bp.route('/', methods=['GET'])
def status():
    started = current_app.config['STARTED_AT']
    return jsonify({
        'started': started.isoformat(),
        'uptime': round(time.monotonic() - current_app.config['STARTED_MONOTONIC'], 3)
    })


@health_bp.route('/health', methods=['GET'])
def health():
    composer = _composer_status()
    body = {
        'status': composer['status'],
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'components': {
            'composer': composer,
            'security': {'enabled': bool(current_app.config.get('COMPOSER_SECURITY'))},
            'websockets': {
                'enabled': 'wss' in current_app.extensions,
                'clients': len(current_app.extensions['wss'].open_clients)
                if 'wss' in current_app.extensions else 0
            }
        }
    }
    return jsonify(body), 200 if composer['status'] == 'healthy' else 503


def init_health(app: Flask) -> Blueprint:
    app.config.setdefault('STARTED_AT', datetime.now(timezone.utc))
    app.config.setdefault('STARTED_MONOTONIC', time.monotonic())
    app.register_blueprint(health_bp)
    return health_bp
