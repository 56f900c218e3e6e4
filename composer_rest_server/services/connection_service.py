"""
Business Network Connection Service

Connection profiles, administrative operations and the client connection the
REST server uses to reach a deployed business network.

Connection profiles are JSON documents stored through the injectable
filesystem at ``connection-profiles/<name>/connection.json``. The only profile
type this server can connect with is ``embedded``, which resolves business
networks from the process-wide :class:`EmbeddedRuntime`.

Typical use::

    admin = AdminConnection(fs=fs)
    admin.create_profile('defaultProfile', {'type': 'embedded'})
    admin.connect('defaultProfile', 'admin', 'adminpw')
    admin.deploy(BusinessNetworkDefinition.from_file('bond-network.json'))

    connection = BusinessNetworkConnection(fs=fs)
    definition = connection.connect('defaultProfile', 'bond-network', 'admin', 'adminpw')
"""

import json
import logging
import posixpath
from typing import Any, Dict, List, Optional

from composer_rest_server.errors import (
    ConfigurationError,
    ConnectionProfileNotFoundError,
    NetworkResolutionError,
)
from composer_rest_server.filesystem import LocalFileSystem
from composer_rest_server.models.business_network import BusinessNetworkDefinition
from composer_rest_server.services.runtime import (
    DeployedNetwork,
    EmbeddedRuntime,
    EventListener,
    Registry,
    get_embedded_runtime,
)

logger = logging.getLogger(__name__)

PROFILE_DIRECTORY = 'connection-profiles'
PROFILE_FILE = 'connection.json'
SUPPORTED_PROFILE_TYPES = ('embedded',)


class ConnectionProfileStore:
    """Reads and writes connection profiles through an injected filesystem."""

    def __init__(self, fs: Any = None):
        self.fs = fs if fs is not None else LocalFileSystem()

    @staticmethod
    def profile_path(name: str) -> str:
        return posixpath.join(PROFILE_DIRECTORY, name, PROFILE_FILE)

    def create_profile(self, name: str, profile: Dict[str, Any]) -> None:
        if not profile.get('type'):
            raise ConfigurationError(f"Connection profile {name} must specify a type")
        self.fs.write_text(self.profile_path(name), json.dumps(profile, indent=4))
        logger.info(f"Created connection profile {name} ({profile['type']})")

    def load_profile(self, name: str) -> Dict[str, Any]:
        path = self.profile_path(name)
        if not name or not self.fs.exists(path):
            raise ConnectionProfileNotFoundError(name)
        try:
            return json.loads(self.fs.read_text(path))
        except json.JSONDecodeError as e:
            raise NetworkResolutionError(
                f"Connection profile {name} is not valid JSON: {e.msg}",
                error_code='PROFILE_INVALID',
                details={'connection_profile_name': name}
            )

    def delete_profile(self, name: str) -> None:
        path = self.profile_path(name)
        if not self.fs.exists(path):
            raise ConnectionProfileNotFoundError(name)
        self.fs.remove(path)

    def has_profile(self, name: str) -> bool:
        return self.fs.exists(self.profile_path(name))


def _runtime_for_profile(name: str, profile: Dict[str, Any], runtime: EmbeddedRuntime) -> EmbeddedRuntime:
    profile_type = profile.get('type')
    if profile_type not in SUPPORTED_PROFILE_TYPES:
        raise NetworkResolutionError(
            f"Connection profile {name} has unsupported type '{profile_type}'",
            error_code='PROFILE_TYPE_UNSUPPORTED',
            details={'connection_profile_name': name, 'type': profile_type}
        )
    return runtime


class AdminConnection:
    """Administrative connection used to manage profiles and deployments."""

    def __init__(self, fs: Any = None, runtime: Optional[EmbeddedRuntime] = None):
        self.profiles = ConnectionProfileStore(fs)
        self._runtime = runtime or get_embedded_runtime()
        self._connected_runtime: Optional[EmbeddedRuntime] = None
        self.participant_id: Optional[str] = None

    def create_profile(self, name: str, profile: Dict[str, Any]) -> None:
        self.profiles.create_profile(name, profile)

    def delete_profile(self, name: str) -> None:
        self.profiles.delete_profile(name)

    def connect(self, profile_name: str, participant_id: str, participant_pwd: Optional[str] = None) -> None:
        profile = self.profiles.load_profile(profile_name)
        self._connected_runtime = _runtime_for_profile(profile_name, profile, self._runtime)
        self.participant_id = participant_id
        logger.debug(f"Admin connection opened on {profile_name} as {participant_id}")

    def _require_connection(self) -> EmbeddedRuntime:
        if self._connected_runtime is None:
            raise NetworkResolutionError("Admin connection is not connected", error_code='NOT_CONNECTED')
        return self._connected_runtime

    def deploy(self, definition: BusinessNetworkDefinition) -> DeployedNetwork:
        return self._require_connection().deploy(definition)

    def undeploy(self, identifier: str) -> None:
        self._require_connection().undeploy(identifier)

    def list(self) -> List[str]:
        return self._require_connection().list()

    def disconnect(self) -> None:
        self._connected_runtime = None
        self.participant_id = None


class BusinessNetworkConnection:
    """
    Client connection to one deployed business network.

    ``connect`` resolves the connection profile and the business network;
    every failure is raised as a :class:`NetworkResolutionError` subclass.
    """

    def __init__(self, fs: Any = None, runtime: Optional[EmbeddedRuntime] = None):
        self.profiles = ConnectionProfileStore(fs)
        self._runtime = runtime or get_embedded_runtime()
        self._network: Optional[DeployedNetwork] = None
        self._listeners: List[EventListener] = []
        self.participant_id: Optional[str] = None
        self.connection_profile_name: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._network is not None

    def connect(self, profile_name: str, business_network_identifier: str,
                participant_id: str, participant_pwd: Optional[str] = None) -> BusinessNetworkDefinition:
        profile = self.profiles.load_profile(profile_name)
        runtime = _runtime_for_profile(profile_name, profile, self._runtime)
        self._network = runtime.get(business_network_identifier)
        self.participant_id = participant_id
        self.connection_profile_name = profile_name
        logger.info(
            f"Connected to business network {business_network_identifier} "
            f"using profile {profile_name} as {participant_id}"
        )
        return self._network.definition

    def _require_network(self) -> DeployedNetwork:
        if self._network is None:
            raise NetworkResolutionError("Business network connection is not connected", error_code='NOT_CONNECTED')
        return self._network

    @property
    def definition(self) -> BusinessNetworkDefinition:
        return self._require_network().definition

    def ping(self) -> Dict[str, Any]:
        network = self._require_network()
        return {
            'businessNetwork': network.identifier,
            'version': network.definition.version,
            'participant': self.participant_id
        }

    def registry(self, fully_qualified_name: str) -> Registry:
        network = self._require_network()
        try:
            return network.registries[fully_qualified_name]
        except KeyError:
            raise NetworkResolutionError(
                f"Registry {fully_qualified_name} does not exist in {network.identifier}",
                error_code='REGISTRY_NOT_FOUND'
            )

    def submit_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        return self._require_network().submit_transaction(transaction)

    def historian(self) -> List[Dict[str, Any]]:
        return list(self._require_network().historian)

    def on_event(self, listener: EventListener) -> None:
        """Register ``listener`` to be called with each committed transaction."""
        self._require_network().add_listener(listener)
        self._listeners.append(listener)

    def disconnect(self) -> None:
        if self._network is not None:
            for listener in self._listeners:
                self._network.remove_listener(listener)
        self._listeners = []
        self._network = None
        logger.debug("Business network connection closed")
