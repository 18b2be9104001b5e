"""Error taxonomy shared by the tracker components."""

from __future__ import annotations

__all__ = [
    "StudyTrackerError",
    "ValidationError",
    "AuthenticationError",
    "InvalidTransitionError",
    "NotLoggedInError",
    "ResourceLookupError",
    "QuizGenerationError",
    "PersistenceError",
]


class StudyTrackerError(RuntimeError):
    """Base class for tracker failures."""


class ValidationError(StudyTrackerError):
    """Raised when caller input is rejected; the caller should re-prompt."""


class AuthenticationError(ValidationError):
    """Raised when a login attempt does not match a stored profile."""


class InvalidTransitionError(StudyTrackerError):
    """Raised when an operation is not valid in the current state."""


class NotLoggedInError(StudyTrackerError):
    """Raised when a per-user operation runs without a current user."""


class ResourceLookupError(StudyTrackerError):
    """Raised when resource suggestions cannot be produced.

    The message is safe to show to users.
    """


class QuizGenerationError(StudyTrackerError):
    """Raised when a quiz cannot be generated for a finished session."""


class PersistenceError(StudyTrackerError):
    """Raised when the blob store cannot serialize or write a document."""
