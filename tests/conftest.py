"""
Pytest configuration and fixtures for the REST server tests.

Every test gets its own connection-profile directory (a ``LocalFileSystem``
rooted in ``tmp_path``) and its own embedded runtime with the bond network
deployed, so bootstraps never share state through the process-wide runtime or
through environment variables.
"""

import copy
import datetime
import os
from typing import Any, Dict

import pytest

from composer_rest_server import server
from composer_rest_server.config import ComposerConfig
from composer_rest_server.filesystem import LocalFileSystem
from composer_rest_server.models.business_network import BusinessNetworkDefinition
from composer_rest_server.services.connection_service import ConnectionProfileStore
from composer_rest_server.services.runtime import EmbeddedRuntime, get_embedded_runtime


BOND_NETWORK: Dict[str, Any] = {
    'name': 'bond-network',
    'version': '0.1.0',
    'description': 'Bond trading network',
    'namespaces': [
        {
            'namespace': 'org.acme.bond',
            'declarations': [
                {
                    'name': 'BondAsset',
                    'kind': 'asset',
                    'identifiedBy': 'ISINCode',
                    'properties': [
                        {'name': 'ISINCode', 'type': 'String'},
                        {'name': 'faceAmount', 'type': 'Double'},
                        {'name': 'issuer', 'type': 'String', 'optional': True},
                        {'name': 'maturity', 'type': 'DateTime', 'optional': True}
                    ]
                },
                {
                    'name': 'Member',
                    'kind': 'participant',
                    'identifiedBy': 'memberId',
                    'properties': [
                        {'name': 'memberId', 'type': 'String'},
                        {'name': 'name', 'type': 'String'}
                    ]
                },
                {
                    'name': 'PublishBond',
                    'kind': 'transaction',
                    'properties': [
                        {'name': 'ISINCode', 'type': 'String'},
                        {'name': 'faceAmount', 'type': 'Double'}
                    ]
                }
            ]
        },
        {
            'namespace': 'org.acme.audit',
            'declarations': [
                {
                    'name': 'Member',
                    'kind': 'participant',
                    'identifiedBy': 'auditorId',
                    'properties': [
                        {'name': 'auditorId', 'type': 'String'}
                    ]
                }
            ]
        }
    ]
}

TESTING_ENVIRON = {'FLASK_CONFIG': 'testing'}


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "unit: Unit tests for individual components and functions"
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration tests for bootstrapped applications"
    )
    config.addinivalue_line(
        "markers",
        "auth: Authentication and session tests"
    )


def pytest_collection_modifyitems(config, items):
    """Apply markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        if "auth" in item.name or "auth" in str(item.fspath):
            item.add_marker(pytest.mark.auth)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep process environment variables out of every test."""
    for name in list(os.environ):
        if name.startswith('COMPOSER_'):
            monkeypatch.delenv(name)
    monkeypatch.delenv('FLASK_CONFIG', raising=False)


@pytest.fixture
def fs(tmp_path):
    """Filesystem holding connection profiles, with ``defaultProfile`` created."""
    fs = LocalFileSystem(tmp_path / 'composer')
    ConnectionProfileStore(fs).create_profile(
        'defaultProfile', {'name': 'defaultProfile', 'type': 'embedded'}
    )
    return fs


@pytest.fixture
def bond_network_data():
    return copy.deepcopy(BOND_NETWORK)


@pytest.fixture
def bond_definition(bond_network_data):
    return BusinessNetworkDefinition.from_dict(bond_network_data)


@pytest.fixture
def runtime(bond_definition):
    """A private embedded runtime with the bond network deployed."""
    runtime = EmbeddedRuntime()
    runtime.deploy(bond_definition)
    return runtime


@pytest.fixture
def global_runtime():
    """The process-wide runtime, emptied before and after the test."""
    runtime = get_embedded_runtime()
    runtime.reset()
    yield runtime
    runtime.reset()


@pytest.fixture
def composer_config(fs):
    return ComposerConfig(
        connection_profile_name='defaultProfile',
        business_network_identifier='bond-network',
        participant_id='admin',
        participant_pwd='adminpw',
        fs=fs
    )


@pytest.fixture
def bootstrap(runtime):
    """Bootstrap a server on the test runtime and return the result."""
    started = []

    def _bootstrap(composer, environ=None):
        env = dict(TESTING_ENVIRON)
        env.update(environ or {})
        result = server(composer, env, runtime=runtime).result()
        started.append(result)
        return result

    yield _bootstrap

    for result in started:
        result.close()


@pytest.fixture
def app(bootstrap, composer_config):
    return bootstrap(composer_config).app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(scope='session')
def tls_material(tmp_path_factory):
    """A throw-away self-signed certificate and key as PEM files."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'localhost')])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName('localhost')]), critical=False)
        .sign(key, hashes.SHA256())
    )

    directory = tmp_path_factory.mktemp('tls')
    cert_path = directory / 'cert.pem'
    key_path = directory / 'key.pem'
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption()
    ))
    return {
        'cert_path': str(cert_path),
        'key_path': str(key_path),
        'cert': cert_path.read_text(encoding='utf-8'),
        'key': key_path.read_text(encoding='utf-8')
    }
