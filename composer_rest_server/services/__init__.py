"""
Service layer for business network access.

Blueprints and the bootstrap reach deployed business networks only through
the connection classes exported here.
"""

from composer_rest_server.services.connection_service import (
    AdminConnection,
    BusinessNetworkConnection,
    ConnectionProfileStore,
)
from composer_rest_server.services.runtime import (
    DeployedNetwork,
    EmbeddedRuntime,
    Registry,
    get_embedded_runtime,
)

__all__ = [
    'AdminConnection',
    'BusinessNetworkConnection',
    'ConnectionProfileStore',
    'DeployedNetwork',
    'EmbeddedRuntime',
    'Registry',
    'get_embedded_runtime'
]
