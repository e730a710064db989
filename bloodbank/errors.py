"""
Error taxonomy shared by the service modules.

Reads that find nothing return None rather than raising. Store failures
(pymongo errors) are logged and re-raised untouched; only the cases below
get their own types.
"""
import logging
from functools import wraps

from pymongo.errors import PyMongoError

logger = logging.getLogger("bloodbank")


class BloodBankError(Exception):
    """Base class for domain errors."""


class NotFoundError(BloodBankError):
    """A record an operation depends on does not exist."""


class ValidationFailure(BloodBankError):
    """Caller-supplied data rejected before any store call."""


class PermissionDenied(BloodBankError):
    """The caller is neither the owner of the record nor an admin."""


class AuthError(BloodBankError):
    """Identity provider failure; the message is shown to the user as-is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def log_failures(message: str):
    """Log store failures raised by the wrapped operation, then re-raise them."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except PyMongoError:
                logger.exception(message)
                raise
        return wrapper
    return decorator
