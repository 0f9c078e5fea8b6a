"""Typed errors raised by the repositories and services.

The HTTP layer maps :class:`NotFoundError` to 404 and every
:class:`BusinessRuleError` to 400. They also subclass ``LookupError`` and
``ValueError`` so callers that only care about the broad category can keep
catching the builtin types.
"""


class LibraryError(Exception):
    """Base class for library errors."""


class NotFoundError(LibraryError, LookupError):
    """A referenced record does not exist."""


class BusinessRuleError(LibraryError, ValueError):
    """An operation violates a business rule."""


class DuplicateKeyError(BusinessRuleError):
    """A unique value is already used by another active record."""


class ConflictError(BusinessRuleError):
    """The current state of the data does not allow the operation."""


class NoCopiesAvailableError(ConflictError):
    """Every copy of a book is out on loan."""


class InvalidStateError(BusinessRuleError):
    """A referenced record exists but is inactive or suspended."""
