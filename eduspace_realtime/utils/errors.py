from typing import Optional


class RealtimeError(Exception):
    """Base error for messaging and notification operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class InvalidParticipantsError(RealtimeError):
    pass


class EmptyMessageError(RealtimeError):
    pass


class MessageSendError(RealtimeError):
    pass


class MessageNotFoundError(RealtimeError):
    pass


class MessageDeleteForbiddenError(RealtimeError):
    pass


class NotificationNotFoundError(RealtimeError):
    pass
