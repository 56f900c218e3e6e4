"""
Composer REST Server Configuration Management

This module holds the two layers of configuration the server is built from:

- Flask configuration classes (``Config`` and its environment-specific
  subclasses) selected by name through :func:`get_config`.
- The composer bootstrap configuration: :class:`ComposerConfig`, the immutable
  record handed to :func:`composer_rest_server.server`, and
  :class:`EnvironmentSettings`, the snapshot of the ``COMPOSER_DATASOURCES`` and
  ``COMPOSER_PROVIDERS`` environment variables taken once per bootstrap.

Environment variables are only ever read by the ``from_environ`` constructors.
Everything below the outermost entry point receives explicit objects.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from composer_rest_server.errors import ConfigurationError
from composer_rest_server.filesystem import LocalFileSystem

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
NAMESPACE_MODES = ('always', 'required', 'never')


class Config:
    """
    Base configuration class containing common settings for all environments.
    """

    # Flask Core Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'

    # Listener Configuration
    HOST = os.environ.get('COMPOSER_HOST', '0.0.0.0')
    PORT = DEFAULT_PORT

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=int(os.environ.get('SESSION_LIFETIME_MINUTES', '30')))
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    LOG_JSON = True

    # REST API
    API_ROOT = '/api'
    CORS_ENABLED = True
    # Origins allowed to make credentialed requests; empty means any origin, without credentials
    CORS_ORIGINS = [o.strip() for o in os.environ.get('COMPOSER_CORS_ORIGINS', '').split(',') if o.strip()]
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024

    # WebSockets (flask-sock)
    WEBSOCKET_PATH = '/'
    SOCK_SERVER_OPTIONS = {'ping_interval': 25}

    # Connection profiles live below this directory of the default filesystem
    COMPOSER_PROFILE_ROOT = os.environ.get('COMPOSER_PROFILE_ROOT', str(Path.home() / '.composer'))

    @staticmethod
    def init_app(app):
        """
        Initialize application with configuration-specific settings.

        Args:
            app: Flask application instance
        """
        pass

    @classmethod
    def validate_required_config(cls) -> bool:
        """
        Validate that all required configuration variables are set.

        Returns:
            bool: True if all required configuration is valid, False otherwise
        """
        if not cls.SECRET_KEY or cls.SECRET_KEY == 'dev-key-change-in-production':
            logging.warning("Configuration warning: SECRET_KEY not properly set")
            return False
        return True


class DevelopmentConfig(Config):
    """Development configuration with debug logging and console output."""

    DEBUG = True
    TESTING = False
    LOG_LEVEL = 'DEBUG'
    LOG_JSON = False

    @staticmethod
    def init_app(app):
        Config.init_app(app)
        app.logger.info("Development configuration loaded")
        if not DevelopmentConfig.validate_required_config():
            app.logger.warning("Some configuration values are using defaults")


class TestingConfig(Config):
    """
    Testing environment configuration.

    Uses a fixed secret key so sessions survive between test client requests
    and reduces log noise.
    """

    TESTING = True
    DEBUG = False
    SECRET_KEY = 'testing-secret-key'
    LOG_LEVEL = 'WARNING'
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=5)

    @staticmethod
    def init_app(app):
        Config.init_app(app)
        app.logger.info("Testing configuration loaded")


class ProductionConfig(Config):
    """
    Production environment configuration.

    Requires a real SECRET_KEY and secure session cookies.
    """

    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = 'Strict'
    LOG_LEVEL = 'INFO'

    @staticmethod
    def init_app(app):
        Config.init_app(app)

        if app.config['SECRET_KEY'] == 'dev-key-change-in-production':
            app.logger.error("Production SECRET_KEY not configured properly")
            raise RuntimeError("Production SECRET_KEY must be set")


# Configuration mapping for environment-based selection
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type:
    """
    Get configuration class based on environment name.

    Args:
        config_name: Name of the configuration environment

    Returns:
        Configuration class for the specified environment, falling back to
        the development configuration for unknown names.
    """
    if config_name is None:
        config_name = 'default'

    return config.get(config_name, DevelopmentConfig)


def load_environment_variables(env_file: Optional[str] = None) -> bool:
    """
    Load environment variables from a .env file using python-dotenv.

    Existing process variables win over values from the file.

    Returns:
        bool: True if a file was found and loaded
    """
    path = env_file or '.env'
    if not Path(path).exists():
        logger.debug(f"No environment file found at {path}")
        return False

    load_dotenv(path, override=False)
    logger.info(f"Environment variables loaded from: {path}")
    return True


def _parse_json_object(name: str, raw: Optional[str]) -> Dict[str, Dict[str, Any]]:
    if raw is None or raw.strip() == '':
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Environment variable {name} is not valid JSON: {e.msg}",
            details={'variable': name, 'position': e.pos}
        )
    if not isinstance(value, dict):
        raise ConfigurationError(
            f"Environment variable {name} must contain a JSON object",
            details={'variable': name}
        )
    for key, entry in value.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(
                f"Entry '{key}' in {name} must be a JSON object",
                details={'variable': name, 'entry': key}
            )
    return value


def _parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class EnvironmentSettings:
    """
    Snapshot of the environment-driven parts of the bootstrap.

    Attributes:
        datasources: datasource name to connector settings
        providers: login provider key to strategy configuration, in
            declaration order
        config_name: Flask configuration name (``FLASK_CONFIG``)
    """
    datasources: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    config_name: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> 'EnvironmentSettings':
        """
        Read ``COMPOSER_DATASOURCES``, ``COMPOSER_PROVIDERS`` and ``FLASK_CONFIG``.

        Raises:
            ConfigurationError: if either JSON variable is malformed
        """
        return cls(
            datasources=_parse_json_object('COMPOSER_DATASOURCES', environ.get('COMPOSER_DATASOURCES')),
            providers=_parse_json_object('COMPOSER_PROVIDERS', environ.get('COMPOSER_PROVIDERS')),
            config_name=environ.get('FLASK_CONFIG')
        )


# camelCase keys accepted by ComposerConfig.from_dict
_CAMEL_CASE_FIELDS = {
    'connectionProfileName': 'connection_profile_name',
    'businessNetworkIdentifier': 'business_network_identifier',
    'participantId': 'participant_id',
    'participantPwd': 'participant_pwd',
}


@dataclass(frozen=True)
class ComposerConfig:
    """
    Configuration record for one bootstrap of the REST server.

    ``fs`` is the filesystem used to read connection profiles and TLS
    material; it defaults to the user's ``~/.composer`` directory. Relative
    ``tlscert``/``tlskey`` paths resolve against ``fs`` when one is given and
    against the working directory otherwise. A ``port`` of 0 asks the listener
    for any free port.
    """
    connection_profile_name: str
    business_network_identifier: str
    participant_id: str
    participant_pwd: Optional[str] = None
    fs: Any = None
    tls: bool = False
    tlscert: Optional[str] = None
    tlskey: Optional[str] = None
    port: Optional[int] = None
    security: bool = False
    websockets: bool = False
    namespaces: str = 'always'

    def __post_init__(self):
        if self.fs is None:
            object.__setattr__(self, 'fs', LocalFileSystem(Config.COMPOSER_PROFILE_ROOT))
            # Relative TLS paths given without a filesystem are relative to the working directory
            for name in ('tlscert', 'tlskey'):
                path = getattr(self, name)
                if path:
                    object.__setattr__(self, name, os.path.abspath(path))
        if self.namespaces not in NAMESPACE_MODES:
            raise ConfigurationError(
                f"Invalid namespaces option '{self.namespaces}', expected one of {', '.join(NAMESPACE_MODES)}",
                details={'namespaces': self.namespaces}
            )
        if self.tls and not (self.tlscert and self.tlskey):
            raise ConfigurationError("TLS requires both a certificate file and a key file")

    @property
    def resolved_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    def replace(self, **changes) -> 'ComposerConfig':
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return ComposerConfig(**values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ComposerConfig':
        """Build a configuration from a mapping using snake_case or camelCase keys."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _CAMEL_CASE_FIELDS.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option '{key}'", details={'option': key})
            values[name] = value
        missing = [name for name in ('connection_profile_name', 'business_network_identifier', 'participant_id')
                   if not values.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration options: {', '.join(missing)}",
                details={'missing': missing}
            )
        return cls(**values)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str], fs: Any = None) -> 'ComposerConfig':
        """Build a configuration from the ``COMPOSER_*`` variables used by the CLI."""
        port = environ.get('COMPOSER_PORT')
        try:
            port_value = int(port) if port else None
        except ValueError:
            raise ConfigurationError(f"COMPOSER_PORT must be an integer, got '{port}'")

        return cls.from_dict({
            'connection_profile_name': environ.get('COMPOSER_CONNECTION_PROFILE'),
            'business_network_identifier': environ.get('COMPOSER_BUSINESS_NETWORK'),
            'participant_id': environ.get('COMPOSER_ENROLLMENT_ID'),
            'participant_pwd': environ.get('COMPOSER_ENROLLMENT_SECRET'),
            'fs': fs,
            'namespaces': environ.get('COMPOSER_NAMESPACES', 'always'),
            'port': port_value,
            'security': _parse_bool(environ.get('COMPOSER_SECURITY')),
            'websockets': _parse_bool(environ.get('COMPOSER_WEBSOCKETS')),
            'tls': _parse_bool(environ.get('COMPOSER_TLS')),
            'tlscert': environ.get('COMPOSER_TLS_CERTIFICATE'),
            'tlskey': environ.get('COMPOSER_TLS_KEY'),
        })


__all__ = [
    'Config',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'config',
    'get_config',
    'load_environment_variables',
    'EnvironmentSettings',
    'ComposerConfig',
    'DEFAULT_PORT',
    'NAMESPACE_MODES'
]
