"""
Embedded business network runtime.

The embedded runtime hosts deployed business networks in process memory. Each
deployed network owns one registry per asset and participant type, a
historian of committed transactions, and the set of event listeners that are
notified when a transaction commits.

A single process-wide runtime is shared by every connection that uses an
``embedded`` connection profile, the same way the embedded connector of the
original server shared one in-memory world state.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from composer_rest_server.errors import (
    BusinessNetworkDeploymentError,
    BusinessNetworkNotFoundError,
    ResourceExistsError,
    ResourceNotFoundError,
    ResourceValidationError,
)
from composer_rest_server.models.business_network import (
    ASSET,
    PARTICIPANT,
    TRANSACTION,
    BusinessNetworkDefinition,
    TypeDeclaration,
)

logger = logging.getLogger(__name__)

EventListener = Callable[[Dict[str, Any]], None]


class Registry:
    """Resources of one asset or participant type, keyed by identifier."""

    def __init__(self, type_declaration: TypeDeclaration):
        self.type_declaration = type_declaration
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    @property
    def id(self) -> str:
        return self.type_declaration.fully_qualified_name

    def get_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._resources.values()]

    def get(self, identifier: str) -> Dict[str, Any]:
        with self._lock:
            if identifier not in self._resources:
                raise ResourceNotFoundError(self.id, identifier)
            return copy.deepcopy(self._resources[identifier])

    def exists(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._resources

    def add(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        self.type_declaration.validate(resource)
        identifier = self.type_declaration.identifier_of(resource)
        with self._lock:
            if identifier in self._resources:
                raise ResourceExistsError(self.id, identifier)
            self._resources[identifier] = copy.deepcopy(resource)
        logger.debug(f"Added {identifier} to registry {self.id}")
        return copy.deepcopy(resource)

    def update(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        self.type_declaration.validate(resource)
        identifier = self.type_declaration.identifier_of(resource)
        with self._lock:
            if identifier not in self._resources:
                raise ResourceNotFoundError(self.id, identifier)
            self._resources[identifier] = copy.deepcopy(resource)
        return copy.deepcopy(resource)

    def remove(self, identifier: str) -> None:
        with self._lock:
            if identifier not in self._resources:
                raise ResourceNotFoundError(self.id, identifier)
            del self._resources[identifier]

    def __len__(self) -> int:
        return len(self._resources)


class DeployedNetwork:
    """A business network deployed into the embedded runtime."""

    def __init__(self, definition: BusinessNetworkDefinition):
        self.definition = definition
        self.registries: Dict[str, Registry] = {
            t.fully_qualified_name: Registry(t)
            for t in definition.types if t.kind in (ASSET, PARTICIPANT)
        }
        self.historian: List[Dict[str, Any]] = []
        self._listeners: List[EventListener] = []
        self._lock = threading.RLock()

    @property
    def identifier(self) -> str:
        return self.definition.identifier

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def submit_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate, timestamp and record a transaction, then notify listeners.

        Listener failures are logged and do not fail the submission.

        Returns:
            The committed transaction including ``transactionId`` and
            ``timestamp``.
        """
        fqn = transaction.get('$class') if isinstance(transaction, dict) else None
        try:
            type_decl = self.definition.get_type(fqn)
        except KeyError:
            raise ResourceValidationError(f"Unknown transaction type {fqn!r}", fqn)
        if type_decl.kind != TRANSACTION:
            raise ResourceValidationError(f"Type {fqn} is not a transaction", fqn)

        committed = copy.deepcopy(transaction)
        committed.setdefault('transactionId', uuid.uuid4().hex)
        committed.setdefault('timestamp', datetime.now(timezone.utc).isoformat())
        type_decl.validate(committed)

        with self._lock:
            self.historian.append(committed)
            listeners = list(self._listeners)

        logger.info(f"Committed transaction {committed['transactionId']} ({fqn}) on {self.identifier}")
        for listener in listeners:
            try:
                listener(copy.deepcopy(committed))
            except Exception:
                logger.exception(f"Event listener {listener!r} failed for transaction {committed['transactionId']}")
        return copy.deepcopy(committed)


class EmbeddedRuntime:
    """Process-wide host of deployed business networks."""

    def __init__(self):
        self._networks: Dict[str, DeployedNetwork] = {}
        self._lock = threading.RLock()

    def deploy(self, definition: BusinessNetworkDefinition) -> DeployedNetwork:
        with self._lock:
            if definition.identifier in self._networks:
                raise BusinessNetworkDeploymentError(
                    f"Business network {definition.identifier} is already deployed",
                    definition.identifier
                )
            network = DeployedNetwork(definition)
            self._networks[definition.identifier] = network
        logger.info(f"Deployed business network {definition.identifier}@{definition.version}")
        return network

    def undeploy(self, identifier: str) -> None:
        with self._lock:
            if identifier not in self._networks:
                raise BusinessNetworkDeploymentError(
                    f"Business network {identifier} is not deployed", identifier
                )
            del self._networks[identifier]
        logger.info(f"Undeployed business network {identifier}")

    def get(self, identifier: str) -> DeployedNetwork:
        with self._lock:
            network = self._networks.get(identifier)
        if network is None:
            raise BusinessNetworkNotFoundError(identifier)
        return network

    def list(self) -> List[str]:
        with self._lock:
            return sorted(self._networks)

    def reset(self) -> None:
        with self._lock:
            self._networks.clear()


_runtime: Optional[EmbeddedRuntime] = None
_runtime_lock = threading.Lock()


def get_embedded_runtime() -> EmbeddedRuntime:
    """Return the process-wide embedded runtime, creating it on first use."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = EmbeddedRuntime()
        return _runtime
