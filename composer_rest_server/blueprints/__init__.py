"""
Blueprint registration.

The application is made of three blueprints, registered in priority order:

- ``health``: root status and ``/health``
- ``auth``: login strategies and logout, only when security is enabled
- ``api``: the REST API generated from the connected business network

Each entry in :data:`DEFAULT_BLUEPRINTS` decides from the
:class:`BlueprintContext` whether it applies and registers itself through its
``init`` callable.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from flask import Flask

from composer_rest_server.config import ComposerConfig, EnvironmentSettings
from composer_rest_server.errors import ComposerServerError
from composer_rest_server.services.connection_service import BusinessNetworkConnection

logger = logging.getLogger(__name__)


class BlueprintRegistrationError(ComposerServerError):
    """Raised when Flask refuses a blueprint (name or endpoint clash)."""

    def __init__(self, message: str, blueprint_name: str = None):
        super().__init__(
            message,
            error_code='BLUEPRINT_REGISTRATION_ERROR',
            details={'blueprint': blueprint_name}
        )
        self.blueprint_name = blueprint_name


@dataclass
class BlueprintContext:
    """What blueprints need to know about the bootstrap they belong to."""
    composer: ComposerConfig
    settings: EnvironmentSettings
    connection: BusinessNetworkConnection


@dataclass
class BlueprintConfig:
    name: str
    init: Callable[[Flask, BlueprintContext], Any]
    enabled: Callable[[BlueprintContext], bool] = field(default=lambda context: True)
    priority: int = 0
    description: str = ''


def _init_health(app: Flask, context: BlueprintContext):
    from composer_rest_server.blueprints.health import init_health
    return init_health(app)


def _init_auth(app: Flask, context: BlueprintContext):
    from composer_rest_server.blueprints.auth import init_auth
    return init_auth(app, context.settings.providers or None)


def _init_api(app: Flask, context: BlueprintContext):
    from composer_rest_server.blueprints.api import init_api
    return init_api(app, context.connection, context.composer.namespaces)


DEFAULT_BLUEPRINTS: List[BlueprintConfig] = [
    BlueprintConfig(
        name='health',
        init=_init_health,
        priority=1,
        description='Root status and health endpoints'
    ),
    BlueprintConfig(
        name='auth',
        init=_init_auth,
        enabled=lambda context: context.composer.security,
        priority=2,
        description='Login strategies and logout'
    ),
    BlueprintConfig(
        name='api',
        init=_init_api,
        priority=3,
        description='REST API over the business network'
    ),
]


def register_blueprints(app: Flask, context: BlueprintContext,
                        blueprints: Optional[List[BlueprintConfig]] = None) -> Dict[str, Any]:
    """
    Register every enabled blueprint on ``app`` in priority order.

    Returns:
        Mapping of blueprint name to whatever its ``init`` returned

    Raises:
        ComposerServerError: configuration problems raised by a blueprint
        BlueprintRegistrationError: if Flask rejects a blueprint
    """
    registered: Dict[str, Any] = {}
    for config in sorted(blueprints or DEFAULT_BLUEPRINTS, key=lambda c: c.priority):
        if not config.enabled(context):
            logger.debug(f"Skipping disabled blueprint: {config.name}")
            continue
        try:
            registered[config.name] = config.init(app, context)
        except (AssertionError, ValueError) as e:
            raise BlueprintRegistrationError(
                f"Failed to register blueprint {config.name}: {e}",
                blueprint_name=config.name
            ) from e
        logger.debug(f"Registered blueprint: {config.name}")

    logger.info(f"Registered blueprints: {', '.join(registered)}")
    return registered


__all__ = [
    'BlueprintConfig',
    'BlueprintContext',
    'BlueprintRegistrationError',
    'DEFAULT_BLUEPRINTS',
    'register_blueprints'
]
