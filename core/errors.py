# core/errors.py - Generation error taxonomy

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure classes surfaced to callers of the generation engine."""
    INSUFFICIENT_BALANCE = "insufficient_balance"
    AI_BUSY = "ai_busy"
    MALFORMED_AI_RESPONSE = "malformed_ai_response"
    TRANSPORT_FAILURE = "transport_failure"
    INDEX_OUT_OF_RANGE = "index_out_of_range"
    INVALID_ATTACHMENT = "invalid_attachment"
    UNKNOWN_ACCOUNT = "unknown_account"


class GenerationError(Exception):
    """Base class for every error the engine reports to its caller."""
    kind: ErrorKind = ErrorKind.TRANSPORT_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InsufficientBalance(GenerationError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient coins: this prompt costs {required} coins "
                         f"but the balance is {available}.")
        self.required = required
        self.available = available


class AiBusy(GenerationError):
    kind = ErrorKind.AI_BUSY

    def __init__(self, message: str = "The AI is currently busy due to high demand. "
                                      "Please wait a moment and try your request again."):
        super().__init__(message)


class MalformedAiResponse(GenerationError):
    kind = ErrorKind.MALFORMED_AI_RESPONSE

    def __init__(self, detail: str = ""):
        super().__init__("The AI returned an invalid JSON response. This can happen with complex "
                         "requests. Please try simplifying your prompt.")
        self.detail = detail


class TransportFailure(GenerationError):
    kind = ErrorKind.TRANSPORT_FAILURE

    def __init__(self, underlying: str):
        super().__init__(f"Failed to generate website from AI. Error: {underlying}")
        self.underlying = underlying


class IndexOutOfRange(GenerationError):
    kind = ErrorKind.INDEX_OUT_OF_RANGE

    def __init__(self, index: int, history_length: int, reason: Optional[str] = None):
        message = reason or f"No history state at index {index} (history has {history_length} entries)."
        super().__init__(message)
        self.index = index
        self.history_length = history_length


class InvalidAttachment(GenerationError):
    kind = ErrorKind.INVALID_ATTACHMENT

    def __init__(self, message: str = "Invalid attachment data URL."):
        super().__init__(message)


class UnknownAccount(GenerationError):
    kind = ErrorKind.UNKNOWN_ACCOUNT

    def __init__(self, account_id: str):
        super().__init__(f"No usage account found for \"{account_id}\".")
        self.account_id = account_id


# --- Errors raised by AI collaborator implementations ---

class AiCollaboratorError(Exception):
    """Raised by an AiCollaborator when a request cannot be completed."""


class AiRateLimitError(AiCollaboratorError):
    """The provider rejected the request because of rate limiting (HTTP 429)."""


class AiTransportError(AiCollaboratorError):
    """Network or provider-side failure unrelated to rate limiting."""


class AiParseError(AiCollaboratorError):
    """The provider answered, but the body could not be decoded."""


class IntegrationSyncError(Exception):
    """An external service refused or failed a project push."""
