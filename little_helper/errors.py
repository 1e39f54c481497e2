"""
Errors — Shared failure taxonomy

Every component raises a subclass of HelperError. The subclass fixes the
category (ErrorKind) so hosts can render a friendly message without parsing
text, while `detail` keeps the raw error for the audit log.

Categories:
- NOT_FOUND: skill id, file, or version does not exist
- PERMISSION_DENIED: skill disabled or not approved for this session
- MODE_NOT_SUPPORTED: skill not available in the active mode
- INVALID_INPUT: input validation failed
- TIMEOUT: skill exceeded its budget, or an HTTP deadline passed
- UPSTREAM_FAILURE: provider network/status error (router fails over)
- OPERATION_BLOCKED: safe-ops precondition violated, shell op refused
- INTERNAL: database, parse, or I/O failure
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    MODE_NOT_SUPPORTED = "mode_not_supported"
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"
    UPSTREAM_FAILURE = "upstream_failure"
    OPERATION_BLOCKED = "operation_blocked"
    INTERNAL = "internal"


FRIENDLY_MESSAGES = {
    ErrorKind.NOT_FOUND: "I couldn't find what you asked for.",
    ErrorKind.PERMISSION_DENIED: "That action needs your permission first. You can allow it in Settings.",
    ErrorKind.MODE_NOT_SUPPORTED: "That isn't available in the current mode.",
    ErrorKind.INVALID_INPUT: "Something about that request didn't look right. Please check it and try again.",
    ErrorKind.TIMEOUT: "That took too long, so I stopped it.",
    ErrorKind.UPSTREAM_FAILURE: "I couldn't reach the AI service. Please check your connection or API keys.",
    ErrorKind.OPERATION_BLOCKED: "I didn't do that, to keep your files safe.",
    ErrorKind.INTERNAL: "Something went wrong on my side. Please try again.",
}


class HelperError(Exception):
    """Base class for all little_helper errors."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def user_message(self) -> str:
        """Friendly text for the error's category."""
        return FRIENDLY_MESSAGES[self.kind]

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class NotFound(HelperError):
    kind = ErrorKind.NOT_FOUND


class PermissionDenied(HelperError):
    kind = ErrorKind.PERMISSION_DENIED


class ModeNotSupported(HelperError):
    kind = ErrorKind.MODE_NOT_SUPPORTED


class InvalidInput(HelperError):
    kind = ErrorKind.INVALID_INPUT


class Timeout(HelperError):
    kind = ErrorKind.TIMEOUT


class UpstreamFailure(HelperError):
    """Provider or embedding service failure. Carries the HTTP status when known."""

    kind = ErrorKind.UPSTREAM_FAILURE

    def __init__(self, message: str, detail: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, detail)
        self.status = status


class OperationBlocked(HelperError):
    kind = ErrorKind.OPERATION_BLOCKED


class CurrentMatches(OperationBlocked):
    """Restore refused: the file already holds the requested version's bytes."""


class Internal(HelperError):
    kind = ErrorKind.INTERNAL


def user_message(error: BaseException) -> str:
    """Friendly message for any exception (non-helper errors count as INTERNAL)."""
    if isinstance(error, HelperError):
        return error.user_message()
    return FRIENDLY_MESSAGES[ErrorKind.INTERNAL]


def format_error_message(error: str) -> str:
    """Wrap a raw error for display in a chat transcript."""
    return (
        "I encountered an error while processing your request:\n\n"
        f"```\n{error}\n```\n\n"
        "Please try again or rephrase your request."
    )
