from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Malformed or missing input. Raised before any side effect."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=400, details=details)


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    """Not authorized to act on this student or tenant."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message=message, status_code=403)


class ConflictError(AppException):
    """Action conflicts with the current state (double void, referenced template)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=409, details=details)


class DuplicateError(AppException):
    """Duplicate resource."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


class GatewayError(AppException):
    """The payment provider rejected or could not process a collection request."""

    def __init__(self, message: str, payment_id: int | None = None):
        details = {"payment_id": payment_id} if payment_id is not None else {}
        super().__init__(message=message, status_code=400, details=details)


class GatewayConfigurationError(AppException):
    """Gateway URL or credential missing. Operational fault, not a request error."""

    def __init__(self, message: str = "Payment gateway is not configured"):
        super().__init__(message=message, status_code=503)


class IntegrityFault(AppException):
    """A gateway callback references a transaction this ledger does not know."""

    def __init__(self, reference: str):
        super().__init__(
            message=f"No ledger entry for reference {reference}",
            status_code=404,
            details={"reference": reference},
        )
