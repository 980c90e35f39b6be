"""Error types shared by the subscription and notification layers."""

from __future__ import annotations


class MyEventError(Exception):
    """Base class for domain errors surfaced to callers."""

    code = "MyEventError"
    message = "Something went wrong."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    def as_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class NotFound(MyEventError):
    """Raised when an event or participant does not exist."""

    code = "NotFound"
    message = "Event not found."


class CapacityExceeded(MyEventError):
    """Raised when an event has reached its maximum number of participants."""

    code = "CapacityExceeded"
    message = "This event has reached its maximum number of participants."


class EventAlreadyStarted(MyEventError):
    """Raised when subscribing to an event that has already started."""

    code = "EventAlreadyStarted"
    message = "This event has already started."


class ConfigurationError(MyEventError):
    """Mail credentials are missing; sends degrade to failures."""

    code = "ConfigurationError"
    message = "Mail transport is not configured (SMTP user/password missing)."


class TransportFailure(MyEventError):
    """A single email could not be delivered. Never escapes the transport."""

    code = "TransportFailure"
    message = "Email delivery failed."
