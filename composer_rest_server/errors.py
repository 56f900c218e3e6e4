"""
Exception hierarchy for the Composer REST server.

Every error raised by the bootstrap, the business network connection layer and
the REST blueprints derives from :class:`ComposerServerError`, which carries a
machine readable ``error_code``, optional ``details`` and the HTTP status code
the error maps to when it escapes a request handler.

Bootstrap failures are never retried. Configuration problems detected before
bootstrap starts (no configuration at all) are raised directly; everything else
is delivered through the future returned by :func:`composer_rest_server.server`.
"""

from typing import Any, Dict, List, Optional


def format_validation_messages(messages: Any, prefix: str = '') -> List[str]:
    """Flatten nested validation messages into ``field: message`` lines."""
    if isinstance(messages, dict):
        lines = []
        for key, value in messages.items():
            if key == '_schema':
                name = prefix
            else:
                name = f"{prefix}.{key}" if prefix else str(key)
            lines.extend(format_validation_messages(value, name))
        return lines
    if isinstance(messages, (list, tuple)):
        return [line for message in messages for line in format_validation_messages(message, prefix)]
    return [f"{prefix}: {messages}" if prefix else str(messages)]


class ComposerServerError(Exception):
    """Base class for all REST server errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to the JSON body returned by error handlers."""
        return {
            'error': self.__class__.__name__,
            'error_code': self.error_code,
            'message': self.message,
            'details': self.details,
            'status_code': self.status_code
        }


class ConfigurationMissingError(ComposerServerError):
    """Raised synchronously when the bootstrap is called without configuration."""

    def __init__(self, message: str = 'composer not specified'):
        super().__init__(message, error_code='CONFIG_MISSING')


class ConfigurationError(ComposerServerError):
    """Raised for malformed or inconsistent configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code='CONFIG_INVALID', details=details)


class FileReadError(ComposerServerError):
    """Raised when a configured file (TLS certificate or key) cannot be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Unable to read file {path}: {reason}",
            error_code='FILE_READ_FAILED',
            details={'path': path}
        )
        self.path = path


class NetworkResolutionError(ComposerServerError):
    """Raised when a business network cannot be connected to or resolved."""

    status_code = 503

    def __init__(self, message: str, error_code: str = 'NETWORK_RESOLUTION_FAILED',
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, details=details)


class ConnectionProfileNotFoundError(NetworkResolutionError):
    """Raised when a named connection profile does not exist."""

    def __init__(self, profile_name: str):
        super().__init__(
            f"Connection profile {profile_name} does not exist",
            error_code='PROFILE_NOT_FOUND',
            details={'connection_profile_name': profile_name}
        )


class BusinessNetworkNotFoundError(NetworkResolutionError):
    """Raised when no business network is deployed under an identifier."""

    def __init__(self, identifier: str):
        super().__init__(
            f"Business network with identifier {identifier} has not been deployed",
            error_code='NETWORK_NOT_FOUND',
            details={'business_network_identifier': identifier}
        )


class BusinessNetworkDeploymentError(ComposerServerError):
    """Raised when a business network cannot be deployed or undeployed."""

    def __init__(self, message: str, identifier: str):
        super().__init__(
            message,
            error_code='NETWORK_DEPLOYMENT_FAILED',
            details={'business_network_identifier': identifier}
        )


class ResourceValidationError(ComposerServerError):
    """Raised when a resource does not match its type declaration."""

    status_code = 422

    def __init__(self, message: str, type_name: Optional[str] = None,
                 errors: Optional[Dict[str, Any]] = None):
        details: Dict[str, Any] = {}
        if type_name:
            details['type'] = type_name
        if errors:
            details['errors'] = errors
        super().__init__(message, error_code='RESOURCE_INVALID', details=details)

    @classmethod
    def from_messages(cls, summary: str, messages: Any,
                      type_name: Optional[str] = None) -> 'ResourceValidationError':
        """Build the error from marshmallow ``ValidationError.messages``."""
        lines = format_validation_messages(messages)
        errors = messages if isinstance(messages, dict) else {'_schema': messages}
        return cls(f"{summary}: {'; '.join(lines)}", type_name, errors)


class ResourceNotFoundError(ComposerServerError):
    """Raised when a registry does not contain the requested resource."""

    status_code = 404

    def __init__(self, type_name: str, identifier: str):
        super().__init__(
            f"Object with ID '{identifier}' in collection with ID '{type_name}' does not exist",
            error_code='RESOURCE_NOT_FOUND',
            details={'type': type_name, 'id': identifier}
        )


class ResourceExistsError(ComposerServerError):
    """Raised when adding a resource whose identifier is already registered."""

    status_code = 409

    def __init__(self, type_name: str, identifier: str):
        super().__init__(
            f"Object with ID '{identifier}' in collection with ID '{type_name}' already exists",
            error_code='RESOURCE_EXISTS',
            details={'type': type_name, 'id': identifier}
        )


class AuthenticationError(ComposerServerError):
    """Raised for failed logins and unauthenticated API access."""

    status_code = 401

    def __init__(self, message: str, error_code: str = 'AUTHENTICATION_FAILED',
                 status_code: int = 401):
        super().__init__(message, error_code=error_code, status_code=status_code)


__all__ = [
    'ComposerServerError',
    'ConfigurationMissingError',
    'ConfigurationError',
    'FileReadError',
    'NetworkResolutionError',
    'ConnectionProfileNotFoundError',
    'BusinessNetworkNotFoundError',
    'BusinessNetworkDeploymentError',
    'ResourceValidationError',
    'ResourceNotFoundError',
    'ResourceExistsError',
    'AuthenticationError'
]
