"""Exceptions raised by the study engine and its stores."""
from typing import Optional


class LexibotError(Exception):
    """Base exception for the bot."""
    pass


class EmptyQueueError(LexibotError):
    """Raised when there are no due reviews and no new words to study."""

    def __init__(self, message: str = "Nothing to study today"):
        super().__init__(message)


class PersistenceError(LexibotError):
    """Raised when a read or write against the word store fails."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Persistence failure during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class MalformedInputError(LexibotError):
    """Raised when a spelling submission is empty or whitespace-only."""
    pass


class SessionStateError(LexibotError):
    """Raised when an action does not fit the session's current phase or step."""
    pass
