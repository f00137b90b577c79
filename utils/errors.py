"""
Error taxonomy shared by storage, the scheduler core and the bot handlers.

Empty study queues are NOT errors: select_queue() returns [] and callers
check for it. EmptyQueueError only fires when someone starts a session anyway.
"""


class FlashcardError(Exception):
    """Base class for everything raised on purpose by this app."""


class ValidationError(FlashcardError):
    """A card, deck or session failed its schema. Nothing was persisted."""

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class StorageError(FlashcardError):
    """The underlying read/write failed. The original error is __cause__."""


class EmptyQueueError(FlashcardError):
    """A study session was started with nothing to study."""


class SessionStateError(FlashcardError):
    """The session state machine got a step it can't accept in its current state."""


class SessionBusyError(SessionStateError):
    """A step arrived while the previous one (or its writes) was still pending."""


class BackupError(FlashcardError):
    """A backup file is missing, unreadable or doesn't contain valid records."""


class CardGoneError(SessionStateError):
    """The current card was deleted from storage while the session was running."""
