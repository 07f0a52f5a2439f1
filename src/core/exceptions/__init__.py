from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DuplicateError,
    GatewayError,
    GatewayConfigurationError,
    IntegrityFault,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "DuplicateError",
    "GatewayError",
    "GatewayConfigurationError",
    "IntegrityFault",
]
