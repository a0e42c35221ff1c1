from __future__ import annotations


class TriageError(Exception):
    """Base class for errors raised by the inbox triage services."""


class InvalidArgument(TriageError, ValueError):
    """A required identifier is missing or a value is outside its allowed set."""


class AuthorizationMissing(TriageError):
    """No stored Gmail credentials exist for the requested user."""


class UpstreamFailure(TriageError):
    """The Gmail API (or the Google userinfo endpoint) returned an error."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class BodyDecodeError(TriageError, ValueError):
    """A MIME part carried body data that is not valid base64url/UTF-8."""
