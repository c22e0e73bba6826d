class ChatError(Exception):
    """Base class for every error raised by the request-processing pipeline."""


class ValidationError(ChatError):
    """Malformed caller input, rejected before anything is written."""


class NotFound(ChatError):
    """A conversation, message or queue item does not exist (or is not visible to the caller)."""


class StorageError(ChatError):
    """The document store could not read or write its backing storage."""


class ProviderError(ChatError):
    """The generation provider answered, but not with a usable reply."""


class ProviderUnavailable(ProviderError):
    """The generation provider could not be reached at all."""


class InvalidTransition(ChatError, AssertionError):
    """
    Attempted queue status change that the lifecycle does not allow.
    This is a programming error, so it also reads as a failed assertion.
    """

    def __init__(self, item_id: str, current: str, requested: str):
        super().__init__(f"Queue item {item_id}: cannot move from {current} to {requested}")
        self.item_id = item_id
        self.current = current
        self.requested = requested
