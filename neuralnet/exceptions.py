"""
exceptions.py
~~~~~~~~~~~~~

Errors raised by the network engine.

Both are ``ValueError`` subclasses so callers that already guard against
bad arguments keep working.
"""

from typing import Any, Optional


class ConfigurationError(ValueError):
    """Raised when a network configuration cannot produce a usable network."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"Invalid '{field}': {message} (got {value!r})")


class ShapeMismatchError(ValueError):
    """Raised when a vector or snapshot does not fit the network topology."""

    def __init__(
        self,
        message: str,
        expected: Optional[int] = None,
        actual: Optional[int] = None
    ):
        self.expected = expected
        self.actual = actual
        if expected is not None and actual is not None:
            message = f"{message}: expected {expected}, got {actual}"
        super().__init__(message)
