"""
Business network definition model.

A business network definition describes the asset, participant and
transaction types a deployed network manages. Definitions are plain JSON
documents::

    {
        "name": "bond-network",
        "version": "0.1.0",
        "description": "Bond trading network",
        "namespaces": [
            {
                "namespace": "org.acme.bond",
                "declarations": [
                    {
                        "name": "BondAsset",
                        "kind": "asset",
                        "identifiedBy": "ISINCode",
                        "properties": [
                            {"name": "ISINCode", "type": "String"},
                            {"name": "faceAmount", "type": "Double", "optional": true}
                        ]
                    }
                ]
            }
        ]
    }

Properties typed with one of the primitive types are type-checked by a
marshmallow schema built per type; any other type name (concepts, enums,
relationships) is accepted as opaque JSON.
"""

import json
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, List, Optional, Type

from marshmallow import RAISE, Schema, ValidationError, fields, validate

from composer_rest_server.errors import ConfigurationError, ResourceValidationError

ASSET = 'asset'
PARTICIPANT = 'participant'
TRANSACTION = 'transaction'
KINDS = (ASSET, PARTICIPANT, TRANSACTION)

# Properties every transaction carries, populated by the runtime on submit
TRANSACTION_SYSTEM_FIELDS = {
    'transactionId': (fields.String, {}),
    'timestamp': (fields.DateTime, {}),
}

# marshmallow field class and options per primitive property type
PRIMITIVE_FIELDS = {
    'String': (fields.String, {}),
    'Integer': (fields.Integer, {'strict': True}),
    'Long': (fields.Integer, {'strict': True}),
    'Double': (fields.Float, {'allow_nan': False}),
    'Boolean': (fields.Boolean, {'truthy': {True}, 'falsy': {False}}),
    'DateTime': (fields.DateTime, {}),
}


@dataclass(frozen=True)
class PropertyDeclaration:
    name: str
    type: str
    optional: bool = False
    array: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PropertyDeclaration':
        if 'name' not in data or 'type' not in data:
            raise ConfigurationError("Property declarations require 'name' and 'type'", details={'property': data})
        return cls(
            name=data['name'],
            type=data['type'],
            optional=bool(data.get('optional', False)),
            array=bool(data.get('array', False))
        )

    def schema_field(self) -> fields.Field:
        """The marshmallow field checking values of this property."""
        field_class, options = PRIMITIVE_FIELDS.get(self.type, (fields.Raw, {}))
        presence = {'required': not self.optional, 'allow_none': self.optional}
        if self.array:
            return fields.List(field_class(**options), **presence)
        return field_class(**options, **presence)


@dataclass(frozen=True)
class TypeDeclaration:
    """An asset, participant or transaction type within a namespace."""
    namespace: str
    name: str
    kind: str
    identified_by: Optional[str] = None
    properties: List[PropertyDeclaration] = field(default_factory=list)
    description: str = ''

    @property
    def fully_qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}"

    @classmethod
    def from_dict(cls, namespace: str, data: Dict[str, Any]) -> 'TypeDeclaration':
        kind = data.get('kind')
        if kind not in KINDS:
            raise ConfigurationError(
                f"Type {namespace}.{data.get('name')} has unsupported kind '{kind}'",
                details={'kinds': list(KINDS)}
            )
        if not data.get('name'):
            raise ConfigurationError(f"Type declaration in namespace {namespace} has no name")

        properties = [PropertyDeclaration.from_dict(p) for p in data.get('properties', [])]
        identified_by = data.get('identifiedBy')
        if kind in (ASSET, PARTICIPANT):
            names = {p.name for p in properties}
            if not identified_by or identified_by not in names:
                raise ConfigurationError(
                    f"{kind.capitalize()} {namespace}.{data['name']} must be identified by one of its properties"
                )

        return cls(
            namespace=namespace,
            name=data['name'],
            kind=kind,
            identified_by=identified_by,
            properties=properties,
            description=data.get('description', '')
        )

    @cached_property
    def schema(self) -> Schema:
        """marshmallow schema for instances of this type; unknown properties are rejected."""
        schema_fields: Dict[str, fields.Field] = {
            '$class': fields.String(
                required=True,
                validate=validate.Equal(self.fully_qualified_name, error='Expected $class {other}, got {input!r}')
            )
        }
        if self.kind == TRANSACTION:
            for name, (field_class, options) in TRANSACTION_SYSTEM_FIELDS.items():
                schema_fields[name] = field_class(required=True, **options)
        for prop in self.properties:
            schema_fields[prop.name] = prop.schema_field()
        schema_class: Type[Schema] = Schema.from_dict(schema_fields, name=f"{self.name}Schema")
        return schema_class(unknown=RAISE)

    def validate(self, resource: Dict[str, Any]) -> None:
        """
        Validate a JSON resource against this declaration.

        Raises:
            ResourceValidationError: on a wrong ``$class``, missing required
                properties, unknown properties or primitive type mismatches
        """
        fqn = self.fully_qualified_name
        try:
            self.schema.load(resource)
        except ValidationError as e:
            raise ResourceValidationError.from_messages(f"Instance of {fqn} is invalid", e.messages, fqn) from e

    def identifier_of(self, resource: Dict[str, Any]) -> str:
        return str(resource[self.identified_by])


@dataclass(frozen=True)
class BusinessNetworkDefinition:
    """A deployable business network: identifier, version and its types."""
    identifier: str
    version: str = '0.0.1'
    description: str = ''
    types: List[TypeDeclaration] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BusinessNetworkDefinition':
        identifier = data.get('name')
        if not identifier:
            raise ConfigurationError("Business network definitions require a 'name'")

        types = []
        seen = set()
        for namespace in data.get('namespaces', []):
            ns = namespace.get('namespace')
            if not ns:
                raise ConfigurationError(f"Namespace entry in {identifier} has no 'namespace'")
            for declaration in namespace.get('declarations', []):
                type_decl = TypeDeclaration.from_dict(ns, declaration)
                if type_decl.fully_qualified_name in seen:
                    raise ConfigurationError(f"Duplicate type {type_decl.fully_qualified_name} in {identifier}")
                seen.add(type_decl.fully_qualified_name)
                types.append(type_decl)

        return cls(
            identifier=identifier,
            version=data.get('version', '0.0.1'),
            description=data.get('description', ''),
            types=types
        )

    @classmethod
    def from_file(cls, path: str, fs: Any = None) -> 'BusinessNetworkDefinition':
        if fs is not None:
            text = fs.read_text(path)
        else:
            with open(path, encoding='utf-8') as handle:
                text = handle.read()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Business network definition {path} is not valid JSON: {e.msg}")
        return cls.from_dict(data)

    def get_type(self, fully_qualified_name: str) -> TypeDeclaration:
        for type_decl in self.types:
            if type_decl.fully_qualified_name == fully_qualified_name:
                return type_decl
        raise KeyError(fully_qualified_name)

    def types_of_kind(self, kind: str) -> List[TypeDeclaration]:
        return [t for t in self.types if t.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.identifier,
            'version': self.version,
            'description': self.description,
            'types': [t.fully_qualified_name for t in self.types]
        }
