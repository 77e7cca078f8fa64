"""Error definitions for the oxybal package."""

from typing import Dict, Optional


class OxyBalError(Exception):
    """Base exception for all oxybal errors."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(OxyBalError):
    """Parameter file or configuration errors."""
    pass


class RootFindingError(OxyBalError):
    """A bracketed root search did not produce a root."""
    pass


class NotBracketedError(RootFindingError):
    """Function values at the bracket ends do not change sign."""
    pass


class MaxIterationsExceededError(RootFindingError):
    """Root search ran out of iterations before converging."""
    pass


class InversionError(OxyBalError):
    """Concentration could not be converted back to a partial pressure."""
    pass


class UnclassifiedBoundaryNodeError(OxyBalError):
    """Boundary node type outside the six known boundary classes."""
    pass


class DivisionByZeroError(OxyBalError, ZeroDivisionError):
    """A boundary class (or balance term) has zero accumulated flow."""
    pass
