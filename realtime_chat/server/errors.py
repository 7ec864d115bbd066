"""Errors reported back to the client that caused them."""


class ChatError(Exception):
    """Base class for failures surfaced to the originating connection as an ``error`` event."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ChatValidationError(ChatError):
    """Malformed event or message that breaks a send rule (empty content, bad receiver)."""


class PersistenceError(ChatError):
    """The message store could not complete the operation."""


class UnknownUserError(PersistenceError):
    """A message referenced a user the store does not know."""


class MessageAccessError(ChatError):
    """The message does not exist or the requester is not its sender."""
