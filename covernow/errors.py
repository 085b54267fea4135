"""
errors.py — CoverNow domain exception taxonomy.

Business logic raises these; the tool layer (graph/tools/) converts them into
{success: False, error, errorKind} payloads for the model, and main.py maps the
request-level ones onto the standard {error: {code, message, details}} envelope.

InputValidationError also subclasses ValueError; CoverNowError precedes it in the MRO,
so the CoverNowError handler answers it with 422 VALIDATION_ERROR.
"""
from typing import Any, Optional


class CoverNowError(Exception):
    """Base class for every expected, user-relayable failure."""

    kind: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(CoverNowError, ValueError):
    """Malformed tool or request input. Nothing is mutated."""

    kind = "validation"


class NotFoundError(CoverNowError):
    """Profile, conversation, pending confirmation or research session is missing."""

    kind = "not_found"


class ExpiredStateError(CoverNowError):
    """Pending confirmation or research session outlived its validity window."""

    kind = "expired"


class PhaseOrderError(CoverNowError):
    """A research phase was invoked out of sequence. Fatal for that session."""

    kind = "phase_order"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Invalid phase transition. Expected {expected}, but session is in {actual}"
        )
        self.expected = expected
        self.actual = actual


class UpstreamError(CoverNowError):
    """
    Search provider or LLM failure.

    partial carries whatever research progress existed when the call failed,
    so the caller can still report insights/searches gathered so far.
    """

    kind = "upstream"

    def __init__(self, message: str, partial: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.partial = partial or {}


class TokenLimitError(CoverNowError):
    """Conversation hit settings.token_limit and the client has not opted into rolling mode."""

    kind = "token_limit"

    def __init__(self, token_count: int) -> None:
        super().__init__(
            "Token limit reached. Start a new chat for best results, or resend with "
            "the x-rolling-mode-acknowledged: true header to continue here "
            "(older messages will be dropped and quality might suffer)."
        )
        self.token_count = token_count
