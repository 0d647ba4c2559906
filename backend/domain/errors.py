"""
Failure taxonomy for position resolution.

Each error carries a short, human-readable `user_message` the presentation
layer can show as-is.
"""
from typing import Optional


class LocationError(Exception):
    """Base class for every resolution failure."""

    user_message = "Your position could not be determined."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class PermissionDenied(LocationError):
    """The user refused location access. Not retryable without user action."""

    user_message = "Location permission denied."


class SignalUnavailable(LocationError):
    """The sensor answered, but never with a usable accuracy."""

    user_message = "GPS signal too weak."

    def __init__(self, message: Optional[str] = None, last_accuracy: Optional[float] = None):
        super().__init__(message)
        self.last_accuracy = last_accuracy


class PositionTimeout(LocationError):
    """The sensor did not answer before the attempt deadline."""

    user_message = "GPS did not respond in time."


class ProviderUnavailable(LocationError):
    """A remote provider or local store could not produce a result."""

    user_message = "Location service unavailable."

    def __init__(self, message: Optional[str] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ValidationFailure(LocationError):
    """An address failed validation. Internal: triggers a rebuild."""


class CascadeExhausted(LocationError):
    """Every enabled tier failed. Only possible with the default tier disabled."""

    user_message = "No position source is available right now."
