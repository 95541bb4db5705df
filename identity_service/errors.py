"""
Exception hierarchy for Identity Service.

QualityError and DetectionTimeout are expected, recoverable outcomes of a
capture attempt. LoadError and InitializationError must reach the operator.
A missing match is not an error; see recognition.matching.MatchResult.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .recognition.quality import QualityVerdict


class IdentityServiceError(Exception):
    """Base exception for all Identity Service errors."""
    pass


class LoadError(IdentityServiceError):
    """Raised when the identity snapshot cannot be obtained or validated."""
    pass


class InitializationError(IdentityServiceError):
    """Raised when the detector is unavailable or used before initialization."""
    pass


class QualityError(IdentityServiceError):
    """
    Raised when a captured sample is not admissible.

    The message is shown to the end user unmodified.
    """

    def __init__(self, message: str, verdict: Optional['QualityVerdict'] = None):
        super().__init__(message)
        self.message = message
        self.verdict = verdict


class DetectionTimeout(IdentityServiceError):
    """Raised when the detector does not answer within the caller's bound."""
    pass


class PersistenceError(IdentityServiceError):
    """Raised when the backend refuses or cannot store enrollment data."""
    pass


class UnknownIdentityError(IdentityServiceError, KeyError):
    """Raised when an operation names an identity that is not in the store."""

    def __str__(self) -> str:
        return Exception.__str__(self)
