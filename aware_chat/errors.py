"""Error taxonomy for the chat core.

Classifier errors are recovered inside a turn (the turn is left unscored).
Timeouts and engine faults are surfaced to the caller as error events.
"""


class AwareChatError(Exception):
    """Base class for all errors raised by aware_chat."""


class EngineNotReady(AwareChatError):
    """The generation engine has not finished loading."""


class SessionCancelled(AwareChatError):
    """The generation session was cancelled; activations are unavailable."""


class GenerationTimeout(AwareChatError):
    """Generation did not complete within the configured wall-clock budget."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Generation timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class ModelUnavailable(AwareChatError):
    """No classifier backend is loaded."""


class ModelOutputUnrecognized(AwareChatError):
    """The classifier backend returned no recognizable probability output."""


class EngineFault(AwareChatError):
    """The generation engine failed while streaming."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConversationArchived(AwareChatError):
    """An archived conversation cannot be modified."""
