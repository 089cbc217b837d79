"""
Utility modules for the loyalty engine.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    exception_response,
)
from .exceptions import (
    LoyaltyError,
    NotFoundError,
    OrganizationNotFoundError,
    CustomerNotFoundError,
    ValidationError,
    DataStoreError,
)

__all__ = [
    'setup_logging',
    'ErrorCode',
    'error_response',
    'bad_request',
    'unauthorized',
    'forbidden',
    'not_found',
    'exception_response',
    'LoyaltyError',
    'NotFoundError',
    'OrganizationNotFoundError',
    'CustomerNotFoundError',
    'ValidationError',
    'DataStoreError',
]
