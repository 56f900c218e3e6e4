"""
Authentication Blueprint

Registers the login routes of the configured login providers, followed by
the logout route. Provider configuration uses the JSON shape of the
``COMPOSER_PROVIDERS`` environment variable, loaded with :class:`ProviderSchema`::

    {
        "github-login": {
            "provider": "github",
            "module": "passport-github2",
            "clientID": "...",
            "clientSecret": "...",
            "callbackURL": "/auth/github/callback",
            "authPath": "/auth/github",
            "callbackPath": "/auth/github/callback",
            "successRedirect": "/auth/account",
            "failureRedirect": "/login",
            "scope": ["email"],
            "failureFlash": true,
            "display": "GitHub"
        }
    }

Without providers the single ``local`` provider is used. Routes are modelled
as an ordered list of descriptors (local strategy, provider strategy, logout)
built by :func:`build_auth_routes` and registered in sequence, so the URL map
always lists every provider's auth path, then its callback path, in
declaration order, with ``/auth/logout`` last.

Sessions are managed by Flask-Login; local credentials are verified against
werkzeug password hashes held by the user store; OAuth providers are Authlib
Flask clients.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

from authlib.integrations.base_client import OAuthError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, Flask, flash, jsonify, redirect, request, session
from flask_login import LoginManager, current_user, login_user, logout_user
from marshmallow import INCLUDE, Schema, ValidationError, fields, validate, validates_schema

from composer_rest_server.errors import ConfigurationError, format_validation_messages
from composer_rest_server.models.user import UserStore

logger = logging.getLogger(__name__)

LOGOUT_PATH = '/auth/logout'

DEFAULT_PROVIDERS = {
    'local': {
        'provider': 'local',
        'module': 'passport-local',
        'usernameField': 'username',
        'passwordField': 'password',
        'authPath': '/auth/local',
        'callbackPath': '/auth/local/callback',
        'successRedirect': '/',
        'failureRedirect': '/',
        'failureFlash': False
    }
}

# OAuth endpoints of well-known providers; entries may override any of them
KNOWN_OAUTH_PROVIDERS = {
    'github': {
        'authorize_url': 'https://github.com/login/oauth/authorize',
        'access_token_url': 'https://github.com/login/oauth/access_token',
        'api_base_url': 'https://api.github.com/',
        'profile_url': 'user',
    },
    'google': {
        'server_metadata_url': 'https://accounts.google.com/.well-known/openid-configuration',
    },
    'gitlab': {
        'authorize_url': 'https://gitlab.com/oauth/authorize',
        'access_token_url': 'https://gitlab.com/oauth/token',
        'api_base_url': 'https://gitlab.com/api/v4/',
        'profile_url': 'user',
    },
}

OAUTH_CREDENTIAL_REQUIRED = 'Required for OAuth providers.'


class ScopeField(fields.List):
    """Scopes given either as a list or as one space-separated string."""

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, str):
            value = value.split()
        return super()._deserialize(value, attr, data, **kwargs)


class ProviderSchema(Schema):
    """One ``COMPOSER_PROVIDERS`` entry; keys the schema does not declare are kept."""

    class Meta:
        unknown = INCLUDE

    provider = fields.String(required=True, validate=validate.Length(min=1))
    module = fields.String()
    client_id = fields.String(data_key='clientID')
    client_secret = fields.String(data_key='clientSecret')
    callback_url = fields.String(data_key='callbackURL')
    auth_path = fields.String(data_key='authPath')
    callback_path = fields.String(data_key='callbackPath')
    success_redirect = fields.String(data_key='successRedirect')
    failure_redirect = fields.String(data_key='failureRedirect')
    scope = ScopeField(fields.String())
    failure_flash = fields.Boolean(data_key='failureFlash')
    display = fields.String()
    username_field = fields.String(data_key='usernameField')
    password_field = fields.String(data_key='passwordField')
    authorize_url = fields.String(data_key='authorizationURL')
    access_token_url = fields.String(data_key='tokenURL')
    profile_url = fields.String(data_key='profileURL')
    server_metadata_url = fields.String(data_key='serverMetadataURL')

    @validates_schema
    def validate_oauth_credentials(self, data, **kwargs):
        if data.get('provider') == 'local' or data.get('module') == 'passport-local':
            return
        missing = [self.fields[name].data_key for name in ('client_id', 'client_secret', 'callback_url')
                   if not data.get(name)]
        if missing:
            raise ValidationError({key: [OAUTH_CREDENTIAL_REQUIRED] for key in missing})


@dataclass(frozen=True)
class ProviderConfig:
    """Strategy configuration of one login provider."""
    key: str
    provider: str
    module: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    callback_url: Optional[str] = None
    auth_path: Optional[str] = None
    callback_path: Optional[str] = None
    success_redirect: str = '/'
    failure_redirect: str = '/'
    scope: List[str] = field(default_factory=list)
    failure_flash: bool = False
    display: Optional[str] = None
    username_field: str = 'username'
    password_field: str = 'password'
    authorize_url: Optional[str] = None
    access_token_url: Optional[str] = None
    api_base_url: Optional[str] = None
    profile_url: Optional[str] = None
    server_metadata_url: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_local(self) -> bool:
        return self.provider == 'local' or self.module == 'passport-local'

    @property
    def endpoint(self) -> str:
        return self.key.replace('.', '_')

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'ProviderConfig':
        """
        Build a provider configuration from its camelCase JSON form.

        Raises:
            ConfigurationError: if ``provider`` is missing, or an OAuth provider
                lacks client credentials, a callback URL or OAuth endpoints
        """
        schema = ProviderSchema()
        try:
            loaded = schema.load(data)
        except ValidationError as e:
            if 'provider' in e.messages:
                raise ConfigurationError(
                    f"Login provider '{key}' does not specify a provider",
                    details={'provider': key, 'errors': e.messages}
                ) from e
            missing = [name for name, errors in e.messages.items() if OAUTH_CREDENTIAL_REQUIRED in errors]
            raise ConfigurationError(
                f"Login provider '{key}' is invalid: {'; '.join(format_validation_messages(e.messages))}",
                details={'provider': key, 'missing': missing, 'errors': e.messages}
            ) from e

        values = {name: value for name, value in loaded.items() if name in schema.fields}
        extra = {name: value for name, value in loaded.items() if name not in schema.fields}
        provider = values['provider']

        is_local = provider == 'local' or values.get('module') == 'passport-local'
        if not is_local:
            for name, value in KNOWN_OAUTH_PROVIDERS.get(provider, {}).items():
                values.setdefault(name, value)
            if not values.get('server_metadata_url') and not (
                    values.get('authorize_url') and values.get('access_token_url')):
                raise ConfigurationError(
                    f"Login provider '{key}' uses unknown provider '{provider}' without "
                    f"authorizationURL and tokenURL",
                    details={'provider': key}
                )

        values.setdefault('auth_path', f"/auth/{provider}")
        if not values.get('callback_path'):
            callback_url = values.get('callback_url') or ''
            values['callback_path'] = callback_url if callback_url.startswith('/') else f"/auth/{provider}/callback"

        return cls(key=key, extra=extra, **values)


@dataclass(frozen=True)
class LocalStrategyRoute:
    """Username/password login: POST to the auth path, GET the callback path."""
    provider: ProviderConfig

    @property
    def paths(self) -> List[str]:
        return [self.provider.auth_path, self.provider.callback_path]

    def register(self, bp: Blueprint, manager: 'AuthenticationManager') -> None:
        provider = self.provider

        def local_login():
            data = request.get_json(silent=True) or request.form
            username = data.get(provider.username_field)
            password = data.get(provider.password_field)
            if not username or not password:
                return _login_failed(provider, 'Username and password required')

            user = manager.users.authenticate(username, password)
            if user is None:
                return _login_failed(provider, 'Invalid username or password')

            login_user(user)
            session['provider'] = provider.key
            logger.info(f"User {user.username} logged in with {provider.key}")
            return redirect(provider.success_redirect)

        def local_callback():
            if current_user.is_authenticated:
                return redirect(provider.success_redirect)
            return redirect(provider.failure_redirect)

        bp.add_url_rule(provider.auth_path, endpoint=provider.endpoint,
                        view_func=local_login, methods=['POST'])
        bp.add_url_rule(provider.callback_path, endpoint=f"{provider.endpoint}_callback",
                        view_func=local_callback, methods=['GET'])


@dataclass(frozen=True)
class ProviderStrategyRoute:
    """OAuth login: the auth path redirects to the provider, which calls back."""
    provider: ProviderConfig

    @property
    def paths(self) -> List[str]:
        return [self.provider.auth_path, self.provider.callback_path]

    def register(self, bp: Blueprint, manager: 'AuthenticationManager') -> None:
        provider = self.provider

        def provider_login():
            client = manager.oauth.create_client(provider.endpoint)
            redirect_uri = urljoin(request.host_url, provider.callback_url)
            return client.authorize_redirect(redirect_uri)

        def provider_callback():
            client = manager.oauth.create_client(provider.endpoint)
            try:
                token = client.authorize_access_token()
                profile = token.get('userinfo')
                if not profile:
                    response = client.get(provider.profile_url, token=token)
                    response.raise_for_status()
                    profile = response.json()
            except OAuthError as e:
                logger.warning(f"{provider.key} login failed: {e.error}")
                return _login_failed(provider, e.description or e.error)

            user = manager.users.find_or_create_identity(provider.key, dict(profile))
            login_user(user)
            session['provider'] = provider.key
            logger.info(f"User {user.username} logged in with {provider.key}")
            return redirect(provider.success_redirect)

        bp.add_url_rule(provider.auth_path, endpoint=provider.endpoint,
                        view_func=provider_login, methods=['GET'])
        bp.add_url_rule(provider.callback_path, endpoint=f"{provider.endpoint}_callback",
                        view_func=provider_callback, methods=['GET'])


@dataclass(frozen=True)
class LogoutRoute:
    """Ends the session and returns to the root path."""
    path: str = LOGOUT_PATH

    @property
    def paths(self) -> List[str]:
        return [self.path]

    def register(self, bp: Blueprint, manager: 'AuthenticationManager') -> None:
        bp.add_url_rule(self.path, endpoint='logout', view_func=logout, methods=['GET'])


AuthRoute = Union[LocalStrategyRoute, ProviderStrategyRoute, LogoutRoute]


def logout():
    """Log the current session out and redirect to the root path."""
    logout_user()
    session.pop('provider', None)
    return redirect('/')


def _login_failed(provider: ProviderConfig, message: str):
    if provider.failure_flash:
        flash(message, 'error')
    logger.warning(f"Login with {provider.key} failed: {message}")
    return redirect(provider.failure_redirect)


def parse_providers(providers: Optional[Dict[str, Dict[str, Any]]]) -> List[ProviderConfig]:
    """Parse provider entries in declaration order, falling back to ``local``."""
    entries = providers if providers else DEFAULT_PROVIDERS
    return [ProviderConfig.from_dict(key, data) for key, data in entries.items()]


def build_auth_routes(providers: Optional[Dict[str, Dict[str, Any]]]) -> List[AuthRoute]:
    """Build the ordered route descriptors for ``providers`` plus logout."""
    routes: List[AuthRoute] = []
    for provider in parse_providers(providers):
        if provider.is_local:
            routes.append(LocalStrategyRoute(provider))
        else:
            routes.append(ProviderStrategyRoute(provider))
    routes.append(LogoutRoute())
    return routes


class AuthenticationManager:
    """
    Coordinates Flask-Login, the user store and the Authlib OAuth clients for
    one application.
    """

    def __init__(self, app: Optional[Flask] = None, routes: Optional[List[AuthRoute]] = None):
        self.routes: List[AuthRoute] = list(routes or [])
        self.login_manager: Optional[LoginManager] = None
        self.oauth: Optional[OAuth] = None
        self.users: Optional[UserStore] = None
        if app is not None:
            self.init_app(app)

    @property
    def paths(self) -> List[str]:
        return [path for route in self.routes for path in route.paths]

    @property
    def providers(self) -> List[ProviderConfig]:
        return [r.provider for r in self.routes if not isinstance(r, LogoutRoute)]

    def init_app(self, app: Flask) -> None:
        self.users = UserStore(app.data_sources['db'].connector)

        self.login_manager = LoginManager()
        self.login_manager.init_app(app)
        self.login_manager.session_protection = 'basic'
        self.login_manager.user_loader(self.users.get)
        self.login_manager.unauthorized_handler(self._unauthorized)

        self.oauth = OAuth(app)
        for provider in self.providers:
            if provider.is_local:
                continue
            settings = {
                'client_id': provider.client_id,
                'client_secret': provider.client_secret,
                'authorize_url': provider.authorize_url,
                'access_token_url': provider.access_token_url,
                'api_base_url': provider.api_base_url,
                'server_metadata_url': provider.server_metadata_url,
            }
            if provider.scope:
                settings['client_kwargs'] = {'scope': ' '.join(provider.scope)}
            self.oauth.register(
                name=provider.endpoint,
                **{name: value for name, value in settings.items() if value is not None}
            )
            logger.debug(f"Registered OAuth client for {provider.key}")

        app.register_blueprint(create_auth_blueprint(self))
        app.extensions['composer_auth'] = self
        logger.info(f"Authentication enabled with providers: {', '.join(p.key for p in self.providers)}")

    @staticmethod
    def _unauthorized():
        return jsonify({
            'error': 'Unauthorized',
            'message': 'Authentication required',
            'status_code': 401
        }), 401


def create_auth_blueprint(manager: AuthenticationManager) -> Blueprint:
    """Create the ``auth`` blueprint with ``manager``'s routes, in order."""
    bp = Blueprint('auth', __name__)
    for route in manager.routes:
        route.register(bp, manager)
    return bp


def init_auth(app: Flask, providers: Optional[Dict[str, Dict[str, Any]]] = None) -> AuthenticationManager:
    """Enable security on ``app`` with ``providers`` (or the local default)."""
    return AuthenticationManager(app, build_auth_routes(providers))
