"""
Domain exceptions raised by the conversation services.

Not-found/forbidden is deliberately absent: lookups return None so that
"does not exist" and "exists but is not visible" are indistinguishable.
"""

from typing import Iterable


class ForumError(Exception):
    """
    Base exception for conversation service errors.

    - message: human-friendly message (safe to show to clients)
    - fields: optional list of request fields related to the error
    """

    status_code = 400

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields) if fields else None

    def to_payload(self) -> dict:
        """JSON body for API responses."""
        payload = {"detail": self.message}
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload


class ConversationValidationError(ForumError):
    """Malformed or policy-violating mutation input. Nothing is committed when it is raised."""

    status_code = 422


class ConversationAuthorizationError(ConversationValidationError):
    """The acting enrollment may not perform the requested mutation."""

    status_code = 403
