"""
Error types and error codes for the Gmail tools.

Every failure surfaced to a tool caller is one of the ``GmailApiError``
subclasses below, or a ``ConfigError`` when the service is not configured.
``error_codes`` turns them into a stable numeric code plus human readable
description and troubleshooting text.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence


class ConfigError(Exception):
    """Required configuration is missing or invalid."""

    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(f"Missing environment variable: {variable}")


class GmailApiError(Exception):
    prefix = "Gmail error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"


class NetworkError(GmailApiError):
    prefix = "Network error"


class AuthError(GmailApiError):
    prefix = "Authentication error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ApiError(GmailApiError):
    prefix = "Gmail API error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MessageRetrievalError(GmailApiError):
    prefix = "Message retrieval error"


class RateLimitError(GmailApiError):
    prefix = "Rate limit error"


class MessageFormatError(GmailApiError):
    """A message could not be decoded, even after every recovery step."""

    prefix = "Message format error"

    def __init__(self, message: str, message_id: Optional[str] = None, errors: Sequence[str] = ()):
        self.message_id = message_id
        self.errors: List[str] = list(errors)
        if self.errors:
            message = f"{message}: " + " | ".join(self.errors)
        super().__init__(message)


class IssueKind(str, Enum):
    MISSING_FIELD = "missing_field"
    TYPE_MISMATCH = "type_mismatch"
    MALFORMED = "malformed"


class DecodeIssue:
    """One structured problem reported by the message decoder."""

    __slots__ = ("kind", "field", "message")

    def __init__(self, kind: IssueKind, field: Optional[str], message: str):
        self.kind = kind
        self.field = field
        self.message = message

    def __repr__(self) -> str:
        return f"DecodeIssue({self.kind.value!r}, {self.field!r}, {self.message!r})"

    def render(self) -> str:
        if self.kind is IssueKind.MISSING_FIELD:
            return f"missing field `{self.field}`"
        if self.kind is IssueKind.TYPE_MISMATCH:
            return f"invalid type for `{self.field}`: {self.message}"
        return self.message


class MessageDecodeError(Exception):
    """Raised when raw JSON cannot be decoded into a message."""

    def __init__(self, issues: Sequence[DecodeIssue]):
        self.issues: List[DecodeIssue] = list(issues)
        super().__init__("; ".join(issue.render() for issue in self.issues) or "undecodable message")

    @property
    def is_malformed(self) -> bool:
        return any(issue.kind is IssueKind.MALFORMED for issue in self.issues)

    def fields(self) -> List[str]:
        return [issue.field for issue in self.issues if issue.field]


class error_codes:
    """Numeric error codes reported to tool callers."""

    CONFIG_ERROR = 1001
    AUTH_ERROR = 1002
    API_ERROR = 1003
    MESSAGE_FORMAT_ERROR = 1004
    GENERAL_ERROR = 1005

    _DESCRIPTIONS = {
        CONFIG_ERROR: "Configuration Error: the server is missing required Gmail settings.",
        AUTH_ERROR: "Authentication Error: Google rejected the OAuth credentials.",
        API_ERROR: "Gmail API Error: the request to the Gmail API did not succeed.",
        MESSAGE_FORMAT_ERROR: "Message Format Error: a message returned by Gmail could not be decoded.",
        GENERAL_ERROR: "General Error: an unexpected failure occurred.",
    }

    _TROUBLESHOOTING = {
        CONFIG_ERROR: (
            "Check that the environment variables GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET "
            "and GMAIL_REFRESH_TOKEN are set (or present in .env)."
        ),
        AUTH_ERROR: (
            "Verify your OAuth credentials. The refresh token may have been revoked; "
            "run scripts/setup_gmail_oauth.py to obtain a new one."
        ),
        API_ERROR: (
            "The API request failed. Check network connectivity, Gmail API quota and "
            "that the Gmail API is enabled for the project."
        ),
        MESSAGE_FORMAT_ERROR: (
            "Gmail returned a message in an unexpected format. Retry the request; "
            "if it keeps failing, report the message id."
        ),
        GENERAL_ERROR: "Check the server logs for details.",
    }

    @classmethod
    def get_error_description(cls, code: int) -> str:
        return cls._DESCRIPTIONS.get(code, f"Unknown Error ({code})")

    @classmethod
    def get_troubleshooting_steps(cls, code: int) -> str:
        return cls._TROUBLESHOOTING.get(code, "Check the server logs for details.")

    @classmethod
    def code_for_error(cls, exc: BaseException) -> int:
        if isinstance(exc, ConfigError):
            return cls.CONFIG_ERROR
        if isinstance(exc, AuthError):
            return cls.AUTH_ERROR
        if isinstance(exc, (MessageFormatError, MessageDecodeError)):
            return cls.MESSAGE_FORMAT_ERROR
        if isinstance(exc, ApiError):
            text = exc.message.lower()
            if "auth" in text:
                return cls.AUTH_ERROR
            if "missing field" in text or "format" in text:
                return cls.MESSAGE_FORMAT_ERROR
            return cls.API_ERROR
        if isinstance(exc, GmailApiError):
            return cls.API_ERROR
        return cls.GENERAL_ERROR
