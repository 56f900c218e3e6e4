"""
Unit tests for the business network layer: definitions, the embedded runtime,
connection profiles and the admin/business network connections.
"""

import json
from unittest.mock import Mock

import pytest

from composer_rest_server.errors import (
    BusinessNetworkDeploymentError,
    BusinessNetworkNotFoundError,
    ConfigurationError,
    ConnectionProfileNotFoundError,
    NetworkResolutionError,
    ResourceExistsError,
    ResourceNotFoundError,
    ResourceValidationError,
)
from composer_rest_server.models.business_network import (
    ASSET,
    PARTICIPANT,
    TRANSACTION,
    BusinessNetworkDefinition,
)
from composer_rest_server.services.connection_service import (
    AdminConnection,
    BusinessNetworkConnection,
    ConnectionProfileStore,
)
from composer_rest_server.services.runtime import EmbeddedRuntime


def bond(isin='US0000001', face=1000.0, **extra):
    resource = {'$class': 'org.acme.bond.BondAsset', 'ISINCode': isin, 'faceAmount': face}
    resource.update(extra)
    return resource


class TestBusinessNetworkDefinition:

    def test_types_by_kind(self, bond_definition):
        assert bond_definition.identifier == 'bond-network'
        assert [t.name for t in bond_definition.types_of_kind(ASSET)] == ['BondAsset']
        assert len(bond_definition.types_of_kind(PARTICIPANT)) == 2
        assert [t.fully_qualified_name for t in bond_definition.types_of_kind(TRANSACTION)] == [
            'org.acme.bond.PublishBond'
        ]

    def test_from_file(self, tmp_path, bond_network_data):
        path = tmp_path / 'bond-network.json'
        path.write_text(json.dumps(bond_network_data))

        definition = BusinessNetworkDefinition.from_file(str(path))

        assert definition.version == '0.1.0'
        assert definition.to_dict()['types'][0] == 'org.acme.bond.BondAsset'

    def test_from_file_rejects_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"name": ')

        with pytest.raises(ConfigurationError, match='not valid JSON'):
            BusinessNetworkDefinition.from_file(str(path))

    def test_asset_must_be_identified_by_a_property(self):
        with pytest.raises(ConfigurationError, match='identified by'):
            BusinessNetworkDefinition.from_dict({
                'name': 'broken',
                'namespaces': [{'namespace': 'org.acme', 'declarations': [
                    {'name': 'Thing', 'kind': 'asset', 'identifiedBy': 'thingId', 'properties': []}
                ]}]
            })

    def test_duplicate_types_rejected(self):
        declaration = {'name': 'Ping', 'kind': 'transaction'}
        with pytest.raises(ConfigurationError, match='Duplicate type'):
            BusinessNetworkDefinition.from_dict({
                'name': 'broken',
                'namespaces': [{'namespace': 'org.acme', 'declarations': [declaration, declaration]}]
            })

    def test_get_unknown_type(self, bond_definition):
        with pytest.raises(KeyError):
            bond_definition.get_type('org.acme.bond.Coupon')


class TestTypeValidation:

    @pytest.fixture
    def bond_type(self, bond_definition):
        return bond_definition.get_type('org.acme.bond.BondAsset')

    def test_valid_resource(self, bond_type):
        bond_type.validate(bond(issuer='ACME', maturity='2030-01-01T00:00:00Z'))

    def test_integer_is_a_valid_double(self, bond_type):
        bond_type.validate(bond(face=1000))

    @pytest.mark.parametrize('resource, message', [
        (bond(face='lots'), 'faceAmount: Not a valid number.'),
        (bond(maturity='next year'), 'maturity: Not a valid datetime.'),
        ({'$class': 'org.acme.bond.BondAsset', 'ISINCode': 'US1'}, 'faceAmount: Missing data for required field.'),
        (bond(coupon=5), 'coupon: Unknown field.'),
        (dict(bond(), **{'$class': 'org.acme.bond.Member'}), 'Expected $class org.acme.bond.BondAsset'),
        (bond(issuer=None, face=None), 'faceAmount: Field may not be null.'),
    ])
    def test_invalid_resources(self, bond_type, resource, message):
        with pytest.raises(ResourceValidationError) as exc_info:
            bond_type.validate(resource)

        assert message in exc_info.value.message
        assert exc_info.value.details['type'] == 'org.acme.bond.BondAsset'

    def test_errors_are_keyed_by_property(self, bond_type):
        with pytest.raises(ResourceValidationError) as exc_info:
            bond_type.validate(bond(face='lots', coupon=5))

        assert set(exc_info.value.details['errors']) == {'faceAmount', 'coupon'}

    def test_optional_property_may_be_null(self, bond_type):
        bond_type.validate(bond(issuer=None))

    def test_not_a_json_object(self, bond_type):
        with pytest.raises(ResourceValidationError, match='Invalid input type'):
            bond_type.validate(['US1'])

    def test_integer_properties_are_strict(self):
        definition = BusinessNetworkDefinition.from_dict({
            'name': 'counter-network',
            'namespaces': [{'namespace': 'org.acme', 'declarations': [{
                'name': 'Counter', 'kind': 'asset', 'identifiedBy': 'counterId',
                'properties': [
                    {'name': 'counterId', 'type': 'String'},
                    {'name': 'value', 'type': 'Integer'},
                    {'name': 'tags', 'type': 'String', 'array': True, 'optional': True},
                    {'name': 'active', 'type': 'Boolean', 'optional': True}
                ]
            }]}]
        })
        counter = definition.get_type('org.acme.Counter')
        counter.validate({'$class': 'org.acme.Counter', 'counterId': 'c1', 'value': 3, 'tags': ['a', 'b']})

        for bad in ({'value': 3.5}, {'value': '3'}, {'value': True}, {'value': 3, 'tags': 'a'},
                    {'value': 3, 'active': 'yes'}):
            with pytest.raises(ResourceValidationError):
                counter.validate(dict({'$class': 'org.acme.Counter', 'counterId': 'c1'}, **bad))


class TestEmbeddedRuntime:

    def test_deploy_and_get(self, bond_definition):
        runtime = EmbeddedRuntime()
        network = runtime.deploy(bond_definition)

        assert runtime.get('bond-network') is network
        assert runtime.list() == ['bond-network']
        assert sorted(network.registries) == [
            'org.acme.audit.Member', 'org.acme.bond.BondAsset', 'org.acme.bond.Member'
        ]

    def test_deploy_twice(self, runtime, bond_definition):
        with pytest.raises(BusinessNetworkDeploymentError, match='already deployed'):
            runtime.deploy(bond_definition)

    def test_get_unknown_network(self, runtime):
        with pytest.raises(BusinessNetworkNotFoundError) as exc_info:
            runtime.get('org-acme-biznet')

        assert exc_info.value.details == {'business_network_identifier': 'org-acme-biznet'}

    def test_undeploy(self, runtime):
        runtime.undeploy('bond-network')

        assert runtime.list() == []
        with pytest.raises(BusinessNetworkDeploymentError):
            runtime.undeploy('bond-network')

    def test_registry_lifecycle(self, runtime):
        registry = runtime.get('bond-network').registries['org.acme.bond.BondAsset']

        registry.add(bond())
        with pytest.raises(ResourceExistsError):
            registry.add(bond())

        registry.update(bond(face=2000.0))
        assert registry.get('US0000001')['faceAmount'] == 2000.0

        registry.remove('US0000001')
        with pytest.raises(ResourceNotFoundError):
            registry.get('US0000001')

    def test_registry_returns_copies(self, runtime):
        registry = runtime.get('bond-network').registries['org.acme.bond.BondAsset']
        registry.add(bond())

        registry.get('US0000001')['faceAmount'] = 1.0

        assert registry.get('US0000001')['faceAmount'] == 1000.0

    def test_submit_transaction_notifies_listeners(self, runtime):
        network = runtime.get('bond-network')
        listener = Mock()
        network.add_listener(listener)

        committed = network.submit_transaction({
            '$class': 'org.acme.bond.PublishBond', 'ISINCode': 'US1', 'faceAmount': 10.0
        })

        assert committed['transactionId']
        assert committed['timestamp']
        assert network.historian == [committed]
        listener.assert_called_once_with(committed)

    def test_failing_listener_does_not_fail_submission(self, runtime):
        network = runtime.get('bond-network')
        failing = Mock(side_effect=OSError('broken pipe'))
        listener = Mock()
        network.add_listener(failing)
        network.add_listener(listener)

        committed = network.submit_transaction({
            '$class': 'org.acme.bond.PublishBond', 'ISINCode': 'US1', 'faceAmount': 10.0
        })

        assert network.historian == [committed]
        failing.assert_called_once_with(committed)
        listener.assert_called_once_with(committed)

    def test_submit_rejects_non_transactions(self, runtime):
        with pytest.raises(ResourceValidationError, match='is not a transaction'):
            runtime.get('bond-network').submit_transaction(bond())


class TestConnectionProfileStore:

    def test_create_and_load(self, fs):
        store = ConnectionProfileStore(fs)
        store.create_profile('otherProfile', {'type': 'embedded'})

        assert fs.exists('connection-profiles/otherProfile/connection.json')
        assert store.load_profile('otherProfile') == {'type': 'embedded'}

    def test_profile_requires_type(self, fs):
        with pytest.raises(ConfigurationError, match='must specify a type'):
            ConnectionProfileStore(fs).create_profile('untyped', {})

    def test_load_missing_profile(self, fs):
        with pytest.raises(ConnectionProfileNotFoundError):
            ConnectionProfileStore(fs).load_profile('missingProfile')

    def test_delete_profile(self, fs):
        store = ConnectionProfileStore(fs)
        store.delete_profile('defaultProfile')

        assert not store.has_profile('defaultProfile')


class TestConnections:

    def test_admin_deploys_business_network(self, fs, bond_definition):
        runtime = EmbeddedRuntime()
        admin = AdminConnection(fs=fs, runtime=runtime)
        admin.connect('defaultProfile', 'admin', 'adminpw')

        admin.deploy(bond_definition)

        assert admin.list() == ['bond-network']

    def test_admin_requires_connection(self, fs, bond_definition):
        with pytest.raises(NetworkResolutionError, match='not connected'):
            AdminConnection(fs=fs, runtime=EmbeddedRuntime()).deploy(bond_definition)

    def test_unsupported_profile_type(self, fs, runtime):
        ConnectionProfileStore(fs).create_profile('hlfProfile', {'type': 'hlfv1'})

        with pytest.raises(NetworkResolutionError, match='unsupported type'):
            BusinessNetworkConnection(fs=fs, runtime=runtime).connect('hlfProfile', 'bond-network', 'admin')

    def test_business_network_connection(self, fs, runtime):
        connection = BusinessNetworkConnection(fs=fs, runtime=runtime)

        definition = connection.connect('defaultProfile', 'bond-network', 'admin', 'adminpw')

        assert definition.identifier == 'bond-network'
        assert connection.ping() == {'businessNetwork': 'bond-network', 'version': '0.1.0', 'participant': 'admin'}

    def test_unknown_registry(self, fs, runtime):
        connection = BusinessNetworkConnection(fs=fs, runtime=runtime)
        connection.connect('defaultProfile', 'bond-network', 'admin')

        with pytest.raises(NetworkResolutionError, match='does not exist'):
            connection.registry('org.acme.bond.Coupon')

    def test_disconnect_removes_event_listeners(self, fs, runtime):
        connection = BusinessNetworkConnection(fs=fs, runtime=runtime)
        connection.connect('defaultProfile', 'bond-network', 'admin')
        listener = Mock()
        connection.on_event(listener)

        connection.disconnect()
        runtime.get('bond-network').submit_transaction({
            '$class': 'org.acme.bond.PublishBond', 'ISINCode': 'US1', 'faceAmount': 10.0
        })

        listener.assert_not_called()
        assert not connection.connected
