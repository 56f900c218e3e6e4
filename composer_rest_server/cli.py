"""composer-rest-server command-line interface.

Commands
- ``composer-rest-server start`` bootstraps the server and serves until
  interrupted. Every option falls back to its ``COMPOSER_*`` environment
  variable.
- ``composer-rest-server profile create NAME`` writes an embedded connection
  profile.

Examples
    $ composer-rest-server profile create defaultProfile
    $ composer-rest-server start -p defaultProfile -n bond-network -i admin -s adminpw \\
          --network-file bond-network.json -w
"""

import logging
import os
from pathlib import Path
from typing import Optional

import click

from composer_rest_server import __version__
from composer_rest_server.bootstrap import server
from composer_rest_server.config import NAMESPACE_MODES, Config, ComposerConfig, load_environment_variables
from composer_rest_server.errors import ComposerServerError
from composer_rest_server.filesystem import LocalFileSystem
from composer_rest_server.models.business_network import BusinessNetworkDefinition
from composer_rest_server.services.connection_service import AdminConnection

logger = logging.getLogger(__name__)


def _filesystem(ctx: click.Context) -> LocalFileSystem:
    return LocalFileSystem(ctx.obj['profile_root'])


@click.group()
@click.version_option(__version__, prog_name='composer-rest-server')
@click.option(
    '--profile-root',
    type=click.Path(file_okay=False, path_type=Path),
    default=Config.COMPOSER_PROFILE_ROOT,
    envvar='COMPOSER_PROFILE_ROOT',
    show_default=True,
    show_envvar=True,
    help='Directory holding connection profiles.',
)
@click.option(
    '--env-file',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help='Environment file to load before reading COMPOSER_* variables.',
)
@click.pass_context
def cli(ctx: click.Context, profile_root: Path, env_file: Optional[Path]):
    """REST server for a deployed business network."""
    load_environment_variables(str(env_file) if env_file else None)
    ctx.ensure_object(dict)
    ctx.obj['profile_root'] = profile_root


@cli.command()
@click.option('--connection-profile', '-p', 'connection_profile_name', required=True,
              envvar='COMPOSER_CONNECTION_PROFILE', show_envvar=True,
              help='Connection profile to connect with.')
@click.option('--business-network', '-n', 'business_network_identifier', required=True,
              envvar='COMPOSER_BUSINESS_NETWORK', show_envvar=True,
              help='Business network identifier.')
@click.option('--enrollment-id', '-i', 'participant_id', required=True,
              envvar='COMPOSER_ENROLLMENT_ID', show_envvar=True,
              help='Participant identity to connect as.')
@click.option('--enrollment-secret', '-s', 'participant_pwd',
              envvar='COMPOSER_ENROLLMENT_SECRET', show_envvar=True,
              help='Secret of the participant identity.')
@click.option('--namespaces', '-N', type=click.Choice(NAMESPACE_MODES), default='always',
              envvar='COMPOSER_NAMESPACES', show_envvar=True, show_default=True,
              help='Use namespaces in REST paths.')
@click.option('--port', '-P', type=click.IntRange(1, 65535), default=None,
              envvar='COMPOSER_PORT', show_envvar=True,
              help='Port to listen on (default 3000).')
@click.option('--security/--no-security', '-S', default=False,
              envvar='COMPOSER_SECURITY', show_envvar=True,
              help='Require authentication for the REST API.')
@click.option('--websockets/--no-websockets', '-w', default=False,
              envvar='COMPOSER_WEBSOCKETS', show_envvar=True,
              help='Broadcast committed transactions over WebSockets.')
@click.option('--tls/--no-tls', '-t', default=False,
              envvar='COMPOSER_TLS', show_envvar=True,
              help='Serve over HTTPS.')
@click.option('--tls-cert', '-c', 'tlscert',
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              envvar='COMPOSER_TLS_CERTIFICATE', show_envvar=True,
              help='PEM certificate file used with --tls.')
@click.option('--tls-key', '-k', 'tlskey',
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              envvar='COMPOSER_TLS_KEY', show_envvar=True,
              help='PEM private key file used with --tls.')
@click.option('--network-file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Business network definition to deploy into the embedded runtime first.')
@click.pass_context
def start(ctx: click.Context, network_file: Optional[Path], tlscert: Optional[Path],
          tlskey: Optional[Path], **options):
    """Bootstrap the REST server and serve until interrupted."""
    fs = _filesystem(ctx)
    try:
        composer = ComposerConfig(
            fs=fs,
            tlscert=str(tlscert.resolve()) if tlscert else None,
            tlskey=str(tlskey.resolve()) if tlskey else None,
            **options
        )
        if network_file is not None:
            admin = AdminConnection(fs=fs)
            admin.connect(composer.connection_profile_name, composer.participant_id, composer.participant_pwd)
            definition = BusinessNetworkDefinition.from_file(str(network_file))
            admin.deploy(definition)
            admin.disconnect()
            click.echo(f"Deployed business network {definition.identifier}@{definition.version}")

        result = server(composer, os.environ).result()
    except ComposerServerError as e:
        raise click.ClickException(e.message) from e

    click.echo(f"Web server listening at: {result.server.url}")
    try:
        result.server.serve_forever()
    except KeyboardInterrupt:
        click.echo("Shutting down")
    finally:
        result.close()


@cli.group()
def profile():
    """Manage connection profiles."""


@profile.command('create')
@click.argument('name')
@click.option('--type', 'profile_type', type=click.Choice(['embedded']), default='embedded', show_default=True)
@click.pass_context
def create_profile(ctx: click.Context, name: str, profile_type: str):
    """Create connection profile NAME."""
    admin = AdminConnection(fs=_filesystem(ctx))
    try:
        admin.create_profile(name, {'name': name, 'type': profile_type})
    except ComposerServerError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"Created connection profile {name}")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
