"""Error types surfaced by the SantaCall stores."""
from __future__ import annotations


class SantaCallError(Exception):
    """Base class for failures that carry a message meant for the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(SantaCallError):
    """Sign-in, sign-up or federated sign-in failed (bad credentials, network, unconfirmed email)."""


class DataFetchError(SantaCallError):
    """A row query failed. Never fatal; stores publish or log the message."""


class DataWriteError(SantaCallError):
    """A create or update call failed."""


def describe_error(exc: BaseException) -> str:
    """Return the human-readable reason for a failure, like a localized description."""
    message = getattr(exc, "message", None) or getattr(exc, "detail", None)
    if isinstance(message, str) and message:
        return message
    text = str(exc).strip()
    return text or exc.__class__.__name__
