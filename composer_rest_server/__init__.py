"""
REST server for business networks.

Usage::

    from composer_rest_server import ComposerConfig, server

    result = server(ComposerConfig(
        connection_profile_name='defaultProfile',
        business_network_identifier='bond-network',
        participant_id='admin',
        participant_pwd='adminpw',
    )).result()
    result.server.serve_forever()
"""

__version__ = '0.1.0'

from composer_rest_server.bootstrap import BootstrapResult, server
from composer_rest_server.config import ComposerConfig, EnvironmentSettings
from composer_rest_server.errors import (
    ComposerServerError,
    ConfigurationError,
    ConfigurationMissingError,
    FileReadError,
    NetworkResolutionError,
)

__all__ = [
    '__version__',
    'BootstrapResult',
    'ComposerConfig',
    'ComposerServerError',
    'ConfigurationError',
    'ConfigurationMissingError',
    'EnvironmentSettings',
    'FileReadError',
    'NetworkResolutionError',
    'server'
]
