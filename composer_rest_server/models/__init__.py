"""Data models: business network definitions and REST server users."""

from composer_rest_server.models.business_network import (
    ASSET,
    PARTICIPANT,
    TRANSACTION,
    BusinessNetworkDefinition,
    PropertyDeclaration,
    TypeDeclaration,
)
from composer_rest_server.models.user import User, UserStore

__all__ = [
    'ASSET',
    'PARTICIPANT',
    'TRANSACTION',
    'BusinessNetworkDefinition',
    'PropertyDeclaration',
    'TypeDeclaration',
    'User',
    'UserStore'
]
