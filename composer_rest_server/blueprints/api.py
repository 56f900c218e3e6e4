"""
REST API over the connected business network.

One set of endpoints is generated per type discovered in the business
network definition:

- assets and participants: ``GET``/``POST`` on ``/<Type>`` and
  ``GET``/``PUT``/``DELETE`` on ``/<Type>/<id>``
- transactions: ``GET`` (committed transactions of that type) and ``POST``
  (submit) on ``/<Type>``

plus ``/system/ping`` and ``/system/historian``. The ``namespaces`` option
decides whether ``<Type>`` is the fully-qualified or the short type name.
When security is enabled every endpoint requires a logged-in session. The one
exception is creating the first user of an empty user store, which is how an
operator signs up before anyone can log in.
"""

import logging
from collections import Counter
from typing import Any, Dict, List

from flask import Blueprint, Flask, current_app, jsonify, request
from flask.views import MethodView
from flask_login import current_user
from marshmallow import RAISE, Schema, ValidationError, fields, validate

from composer_rest_server.errors import ConfigurationError, ResourceValidationError
from composer_rest_server.models.business_network import (
    ASSET,
    PARTICIPANT,
    TRANSACTION,
    BusinessNetworkDefinition,
    TypeDeclaration,
)
from composer_rest_server.services.connection_service import BusinessNetworkConnection

logger = logging.getLogger(__name__)


def resource_names(definition: BusinessNetworkDefinition, namespaces: str = 'always') -> Dict[str, str]:
    """
    Map each type's fully-qualified name to the name used in its REST path.

    Raises:
        ConfigurationError: if ``namespaces`` is ``never`` and two types share
            a short name
    """
    if namespaces == 'always':
        return {t.fully_qualified_name: t.fully_qualified_name for t in definition.types}

    short_names = Counter(t.name for t in definition.types)
    duplicates = sorted(name for name, count in short_names.items() if count > 1)
    if namespaces == 'never' and duplicates:
        raise ConfigurationError(
            f"Types with the same name cannot be exposed without namespaces: {', '.join(duplicates)}",
            details={'duplicates': duplicates}
        )
    return {
        t.fully_qualified_name: t.fully_qualified_name if t.name in duplicates else t.name
        for t in definition.types
    }


class UserCreateSchema(Schema):
    """Local user creation request."""

    class Meta:
        unknown = RAISE

    username = fields.String(required=True, validate=validate.Length(min=1, max=100))
    password = fields.String(required=True, load_only=True, validate=validate.Length(min=1))
    email = fields.Email(allow_none=True)


def _accepts_anonymous_signup() -> bool:
    manager = current_app.extensions.get('composer_auth')
    return manager is None or len(manager.users) == 0


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ResourceValidationError("Request body must be a JSON object")
    return body


class ResourceCollectionAPI(MethodView):
    init_every_request = False

    def __init__(self, connection: BusinessNetworkConnection, type_decl: TypeDeclaration):
        self.connection = connection
        self.type_decl = type_decl

    def get(self):
        return jsonify(self.connection.registry(self.type_decl.fully_qualified_name).get_all())

    def post(self):
        resource = _json_body()
        resource.setdefault('$class', self.type_decl.fully_qualified_name)
        created = self.connection.registry(self.type_decl.fully_qualified_name).add(resource)
        return jsonify(created)


class ResourceItemAPI(MethodView):
    init_every_request = False

    def __init__(self, connection: BusinessNetworkConnection, type_decl: TypeDeclaration):
        self.connection = connection
        self.type_decl = type_decl

    def _registry(self):
        return self.connection.registry(self.type_decl.fully_qualified_name)

    def get(self, id):
        return jsonify(self._registry().get(id))

    def put(self, id):
        resource = _json_body()
        resource.setdefault('$class', self.type_decl.fully_qualified_name)
        identifier = resource.setdefault(self.type_decl.identified_by, id)
        if str(identifier) != id:
            raise ResourceValidationError(
                f"Identifier {identifier!r} in body does not match {id!r} in path",
                self.type_decl.fully_qualified_name
            )
        return jsonify(self._registry().update(resource))

    def delete(self, id):
        self._registry().remove(id)
        return '', 204


class TransactionAPI(MethodView):
    init_every_request = False

    def __init__(self, connection: BusinessNetworkConnection, type_decl: TypeDeclaration):
        self.connection = connection
        self.type_decl = type_decl

    def get(self):
        fqn = self.type_decl.fully_qualified_name
        return jsonify([t for t in self.connection.historian() if t.get('$class') == fqn])

    def post(self):
        transaction = _json_body()
        transaction.setdefault('$class', self.type_decl.fully_qualified_name)
        if transaction['$class'] != self.type_decl.fully_qualified_name:
            raise ResourceValidationError(
                f"Expected $class {self.type_decl.fully_qualified_name}",
                self.type_decl.fully_qualified_name
            )
        return jsonify(self.connection.submit_transaction(transaction))


def create_api_blueprint(connection: BusinessNetworkConnection, namespaces: str = 'always',
                         url_prefix: str = '/api') -> Blueprint:
    """Create the ``api`` blueprint for the types of the connected network."""
    bp = Blueprint('api', __name__, url_prefix=url_prefix)
    definition = connection.definition
    names = resource_names(definition, namespaces)

    @bp.before_request
    def require_login():
        if not current_app.config.get('COMPOSER_SECURITY'):
            return None
        if request.endpoint == 'api.create_user' and _accepts_anonymous_signup():
            return None
        if not current_user.is_authenticated:
            return jsonify({
                'error': 'Unauthorized',
                'message': 'Authentication required',
                'status_code': 401
            }), 401
        return None

    @bp.route('/system/ping')
    def ping():
        return jsonify(connection.ping())

    @bp.route('/system/historian')
    def historian():
        return jsonify(connection.historian())

    @bp.route('/users', methods=['POST'])
    def create_user():
        manager = current_app.extensions.get('composer_auth')
        if manager is None:
            return jsonify({
                'error': 'Not Found',
                'message': 'Security is not enabled',
                'status_code': 404
            }), 404
        try:
            body = UserCreateSchema().load(_json_body())
        except ValidationError as e:
            raise ResourceValidationError.from_messages('Invalid user', e.messages) from e
        user = manager.users.create_local_user(body['username'], body['password'], body.get('email'))
        return jsonify(user.to_dict())

    registered: List[str] = []
    for type_decl in definition.types:
        name = names[type_decl.fully_qualified_name]
        endpoint = name.replace('.', '_')
        if type_decl.kind in (ASSET, PARTICIPANT):
            bp.add_url_rule(
                f"/{name}",
                view_func=ResourceCollectionAPI.as_view(f"{endpoint}_collection", connection, type_decl)
            )
            bp.add_url_rule(
                f"/{name}/<id>",
                view_func=ResourceItemAPI.as_view(f"{endpoint}_item", connection, type_decl)
            )
        elif type_decl.kind == TRANSACTION:
            bp.add_url_rule(
                f"/{name}",
                view_func=TransactionAPI.as_view(f"{endpoint}_transaction", connection, type_decl)
            )
        registered.append(name)

    logger.info(f"Discovered {len(registered)} type(s) in {definition.identifier}: {', '.join(registered)}")
    return bp


def init_api(app: Flask, connection: BusinessNetworkConnection, namespaces: str = 'always') -> Blueprint:
    bp = create_api_blueprint(connection, namespaces, app.config.get('API_ROOT', '/api'))
    app.register_blueprint(bp)
    return bp
