"""Error kinds shared by the session store and the completion exchange."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class ErrorKind(IntEnum):
    """Flat enumeration of failure kinds. The value doubles as exit status."""

    SESSION_FULL = 1
    SESSION_BUFFER_FULL = 2
    INVALID_CHARACTERS = 3  # reserved
    NOT_IMPLEMENTED = 4  # reserved
    TRANSPORT = 5
    SESSION_NO_MESSAGES = 6
    SESSION_LAST_MESSAGE_ASSISTANT = 7
    JSON_PARSE = 8
    API_ERROR = 9
    API_RESPONSE = 10
    IO = 11
    MEMORY = 14


_MESSAGES = {
    ErrorKind.SESSION_FULL: "Reached internal limit of messages in session",
    ErrorKind.SESSION_BUFFER_FULL: "Reached internal limit of combined length of messages in session",
    ErrorKind.INVALID_CHARACTERS: "Message contains invalid characters",
    ErrorKind.NOT_IMPLEMENTED: "Not implemented",
    ErrorKind.TRANSPORT: "Could not reach the completion endpoint",
    ErrorKind.SESSION_NO_MESSAGES: "Session has no messages",
    ErrorKind.SESSION_LAST_MESSAGE_ASSISTANT: "Last message in session is already from the assistant",
    ErrorKind.JSON_PARSE: "Failed to parse JSON",
    ErrorKind.API_ERROR: "API returned an error",
    ErrorKind.API_RESPONSE: "API returned an unexpected response",
    ErrorKind.IO: "I/O error",
    ErrorKind.MEMORY: "Memory allocation error",
}


def strerror(kind: Optional[ErrorKind]) -> str:
    """Return the human-readable message for *kind* (``None`` means success)."""
    if kind is None:
        return "No error"
    return _MESSAGES.get(kind, "Unknown error")


class AIChatError(Exception):
    """Raised by every core operation that fails.

    ``kind`` identifies the failure, ``detail`` carries optional context
    (e.g. the API's own error message) and ``result`` the partially filled
    :class:`~chatty.core.client.CompletionResult` of a failed exchange.
    """

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None, result: Any = None):
        self.kind = kind
        self.detail = detail
        self.result = result
        message = strerror(kind)
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
