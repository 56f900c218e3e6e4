"""
Datasource registration.

A datasource is a named connector instance plus the settings it was created
with. Two connectors exist:

- ``memory``: named in-memory collections (the ``db`` datasource holds users)
- ``composer``: a :class:`BusinessNetworkConnection` opened on registration

Settings are kept verbatim, so arbitrary keys supplied through
``COMPOSER_DATASOURCES`` remain visible on ``app.data_sources[name].settings``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from composer_rest_server.config import ComposerConfig
from composer_rest_server.errors import ConfigurationError
from composer_rest_server.services.connection_service import BusinessNetworkConnection
from composer_rest_server.services.runtime import EmbeddedRuntime

logger = logging.getLogger(__name__)


class MemoryConnector:
    """Connector keeping named collections in process memory."""

    name = 'memory'

    def __init__(self, settings: Dict[str, Any]):
        self.settings = settings
        self._collections: Dict[str, Dict[str, Any]] = {}

    def connect(self) -> None:
        pass

    def collection(self, name: str) -> Dict[str, Any]:
        return self._collections.setdefault(name, {})

    def disconnect(self) -> None:
        self._collections.clear()


class ComposerConnector:
    """Connector exposing a business network connection."""

    name = 'composer'

    def __init__(self, settings: Dict[str, Any], fs: Any = None, runtime: Optional[EmbeddedRuntime] = None):
        self.settings = settings
        self.connection = BusinessNetworkConnection(fs=fs, runtime=runtime)

    def connect(self) -> None:
        self.connection.connect(
            self.settings.get('connectionProfileName'),
            self.settings.get('businessNetworkIdentifier'),
            self.settings.get('participantId'),
            self.settings.get('participantPwd')
        )

    def disconnect(self) -> None:
        self.connection.disconnect()


CONNECTORS = {
    MemoryConnector.name: MemoryConnector,
    ComposerConnector.name: ComposerConnector,
}


@dataclass
class DataSource:
    name: str
    connector_name: str
    settings: Dict[str, Any]
    connector: Any = field(default=None, repr=False)

    def disconnect(self) -> None:
        if self.connector is not None:
            self.connector.disconnect()


class DataSourceRegistry:
    """Named datasources of one application, in registration order."""

    def __init__(self, fs: Any = None, runtime: Optional[EmbeddedRuntime] = None):
        self._fs = fs
        self._runtime = runtime
        self._datasources: Dict[str, DataSource] = {}

    def register(self, name: str, settings: Dict[str, Any]) -> DataSource:
        """
        Create and connect a datasource.

        Raises:
            ConfigurationError: if the settings name no connector or an unknown one
            NetworkResolutionError: if a composer datasource cannot connect
        """
        connector_name = settings.get('connector')
        if connector_name not in CONNECTORS:
            raise ConfigurationError(
                f"Datasource {name} uses unknown connector {connector_name!r}",
                details={'datasource': name, 'connectors': sorted(CONNECTORS)}
            )

        settings = dict(settings)
        settings.setdefault('name', name)
        if connector_name == ComposerConnector.name:
            connector = ComposerConnector(settings, fs=self._fs, runtime=self._runtime)
        else:
            connector = MemoryConnector(settings)
        connector.connect()

        datasource = DataSource(name=name, connector_name=connector_name, settings=settings, connector=connector)
        self._datasources[name] = datasource
        logger.info(f"Registered datasource {name} ({connector_name})")
        return datasource

    def __getitem__(self, name: str) -> DataSource:
        return self._datasources[name]

    def __contains__(self, name: str) -> bool:
        return name in self._datasources

    def __iter__(self) -> Iterator[str]:
        return iter(self._datasources)

    def __len__(self) -> int:
        return len(self._datasources)

    def get(self, name: str) -> Optional[DataSource]:
        return self._datasources.get(name)

    def close(self) -> None:
        for datasource in reversed(list(self._datasources.values())):
            datasource.disconnect()


def default_datasources(composer: ComposerConfig) -> Dict[str, Dict[str, Any]]:
    """Datasource settings every application starts from."""
    return {
        'db': {
            'name': 'db',
            'connector': MemoryConnector.name
        },
        'composer': {
            'name': 'composer',
            'connector': ComposerConnector.name,
            'connectionProfileName': composer.connection_profile_name,
            'businessNetworkIdentifier': composer.business_network_identifier,
            'participantId': composer.participant_id,
            'participantPwd': composer.participant_pwd,
            'namespaces': composer.namespaces
        }
    }


def merge_datasources(defaults: Dict[str, Dict[str, Any]],
                      overrides: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Merge environment datasource settings over the defaults, key by key."""
    merged = {name: dict(settings) for name, settings in defaults.items()}
    for name, settings in overrides.items():
        merged.setdefault(name, {}).update(settings)
    return merged
