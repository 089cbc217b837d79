"""
Custom exceptions for loyalty engine business logic.

Per-customer and per-segment failures are counted inside the services and
never raised. These exceptions are for whole-operation failures and invalid
input at the route boundary.
"""


class LoyaltyError(Exception):
    """Base exception for all loyalty engine errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "LOYALTY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(LoyaltyError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class OrganizationNotFoundError(NotFoundError):
    """Organization not found."""

    def __init__(self, identifier=None):
        super().__init__("Organization", identifier)


class CustomerNotFoundError(NotFoundError):
    """Customer not found."""

    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class ValidationError(LoyaltyError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class DataStoreError(LoyaltyError):
    """The data store could not be reached for a whole operation."""

    status_code = 500

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed: data store unavailable"
        if cause is not None:
            message = f"{message} ({cause})"
        super().__init__(message, "DATABASE_ERROR")
