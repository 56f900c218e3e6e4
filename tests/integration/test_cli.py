"""
Integration tests for the composer-rest-server command line.

``Listener.serve_forever`` is patched so ``start`` returns as soon as the
server is bootstrapped.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from composer_rest_server import __version__
from composer_rest_server.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def profile_root(tmp_path):
    return str(tmp_path / 'composer')


@pytest.fixture
def network_file(tmp_path, bond_network_data):
    path = tmp_path / 'bond-network.json'
    path.write_text(json.dumps(bond_network_data))
    return str(path)


def invoke(runner, profile_root, *args, **kwargs):
    return runner.invoke(cli, ['--profile-root', profile_root, *args], catch_exceptions=False, **kwargs)


class TestProfileCommands:

    def test_create_profile(self, runner, profile_root, tmp_path):
        result = invoke(runner, profile_root, 'profile', 'create', 'defaultProfile')

        assert result.exit_code == 0
        assert 'Created connection profile defaultProfile' in result.output
        stored = tmp_path / 'composer' / 'connection-profiles' / 'defaultProfile' / 'connection.json'
        assert json.loads(stored.read_text()) == {'name': 'defaultProfile', 'type': 'embedded'}

    def test_version(self, runner):
        result = runner.invoke(cli, ['--version'])

        assert __version__ in result.output


class TestStartCommand:

    @pytest.fixture(autouse=True)
    def no_serving(self):
        with patch('composer_rest_server.listener.Listener.serve_forever') as serve_forever:
            yield serve_forever

    @pytest.fixture(autouse=True)
    def default_profile(self, runner, profile_root):
        invoke(runner, profile_root, 'profile', 'create', 'defaultProfile')

    def test_deploys_network_file_and_serves(self, runner, profile_root, network_file, global_runtime, no_serving):
        result = invoke(
            runner, profile_root, 'start',
            '-p', 'defaultProfile', '-n', 'bond-network', '-i', 'admin', '-s', 'adminpw',
            '--network-file', network_file, '-P', '4321'
        )

        assert result.exit_code == 0, result.output
        assert 'Deployed business network bond-network@0.1.0' in result.output
        assert 'Web server listening at: http://0.0.0.0:4321' in result.output
        assert global_runtime.list() == ['bond-network']
        no_serving.assert_called_once_with()

    def test_options_from_environment(self, runner, profile_root, network_file, global_runtime):
        result = invoke(runner, profile_root, 'start', '--network-file', network_file, env={
            'COMPOSER_CONNECTION_PROFILE': 'defaultProfile',
            'COMPOSER_BUSINESS_NETWORK': 'bond-network',
            'COMPOSER_ENROLLMENT_ID': 'admin',
            'COMPOSER_PORT': '3001',
            'COMPOSER_WEBSOCKETS': 'true'
        })

        assert result.exit_code == 0, result.output
        assert 'http://0.0.0.0:3001' in result.output

    def test_unknown_business_network(self, runner, profile_root, global_runtime):
        result = invoke(runner, profile_root, 'start', '-p', 'defaultProfile', '-n', 'org-acme-biznet', '-i', 'admin')

        assert result.exit_code == 1
        assert 'org-acme-biznet' in result.output

    def test_tls_requires_certificate(self, runner, profile_root, global_runtime):
        result = invoke(runner, profile_root, 'start', '-p', 'defaultProfile', '-n', 'bond-network', '-i', 'admin',
                        '--tls')

        assert result.exit_code == 1
        assert 'TLS requires' in result.output

    def test_missing_required_option(self, runner, profile_root):
        result = invoke(runner, profile_root, 'start', '-p', 'defaultProfile')

        assert result.exit_code == 2
