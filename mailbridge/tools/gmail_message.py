"""
Gmail Message Normalizer
Turns raw (sometimes incomplete) Gmail API message JSON into GmailMessage.

Gmail occasionally returns messages without fields its own documentation
marks as always present. Recovery goes from least to most invasive:
strict decode, patch the known gaps and decode again, refetch in a reduced
format, and finally a placeholder message so a listing can keep going.
"""
from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from email.header import decode_header
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import datetime as dt
from pydantic import ValidationError

from mailbridge.schemas.gmail import GmailMessage, MessageBody, MessagePart, MessagePayload
from mailbridge.utils.config import settings
from mailbridge.utils.errors import (
    DecodeIssue,
    IssueKind,
    MessageDecodeError,
    MessageFormatError,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "text/plain"
EPOCH_INTERNAL_DATE = "0"

# fetch(message_id, format, metadata_headers) -> parsed JSON
FetchFn = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class RecoveryPolicy:
    """
    Decides which decode failures are worth patching.

    Structured MISSING_FIELD issues always qualify; ``markers`` keeps the
    older text heuristic as a tunable input.
    """

    markers: Tuple[str, ...] = ("missing field", "unknown field", "missing key", "expected value")
    placeholder_field: str = "internalDate"

    def should_patch(self, error: MessageDecodeError) -> bool:
        if any(issue.kind is IssueKind.MISSING_FIELD for issue in error.issues):
            return True
        text = str(error)
        return any(marker in text for marker in self.markers)

    def wants_placeholder(self, errors: Sequence[BaseException]) -> bool:
        for error in errors:
            if isinstance(error, MessageDecodeError) and self.placeholder_field in error.fields():
                return True
            if self.placeholder_field in str(error):
                return True
        return False


DEFAULT_POLICY = RecoveryPolicy()


# -----------------------------------------------------
# Decoding
# -----------------------------------------------------
def _issue_from_pydantic(error: Dict[str, Any]) -> DecodeIssue:
    field = ".".join(str(part) for part in error.get("loc", ())) or None
    if error.get("type") == "missing":
        return DecodeIssue(IssueKind.MISSING_FIELD, field, error.get("msg", "Field required"))
    return DecodeIssue(IssueKind.TYPE_MISMATCH, field, error.get("msg", "invalid value"))


def decode_message(value: Any) -> GmailMessage:
    """Strict decode of an already-parsed JSON value."""
    try:
        return GmailMessage.model_validate(value)
    except ValidationError as exc:
        raise MessageDecodeError(
            [_issue_from_pydantic(err) for err in exc.errors(include_input=False, include_url=False)]
        ) from exc


def parse_json(raw_text: str) -> Any:
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise MessageDecodeError(
            [DecodeIssue(IssueKind.MALFORMED, None, f"expected value at line {exc.lineno} column {exc.colno}: {exc.msg}")]
        ) from exc


# -----------------------------------------------------
# Patching
# -----------------------------------------------------
def _fill(target: Dict[str, Any], key: str, default: Any) -> bool:
    if target.get(key) is None:
        target[key] = default
        return True
    return False


def patch_message_json(value: Any) -> Tuple[Any, bool]:
    """
    Fill the fields Gmail is known to omit, without touching present values.

    Returns a patched copy and whether anything was filled; the input is not
    mutated. Non-object input comes back unchanged.
    """
    if not isinstance(value, dict):
        return value, False

    patched = copy.deepcopy(value)
    modified = False
    modified |= _fill(patched, "internalDate", EPOCH_INTERNAL_DATE)
    modified |= _fill(patched, "labelIds", [])
    modified |= _fill(patched, "snippet", "")

    if patched.get("threadId") is None:
        message_id = patched.get("id")
        patched["threadId"] = message_id if message_id is not None else "unknown"
        modified = True

    payload = patched.get("payload")
    if payload is None:
        patched["payload"] = {"headers": [], "mimeType": DEFAULT_MIME_TYPE}
        modified = True
    elif isinstance(payload, dict):
        modified |= _fill(payload, "headers", [])
        modified |= _fill(payload, "mimeType", DEFAULT_MIME_TYPE)

    if modified:
        logger.debug("Patched missing fields on message %s", patched.get("id"))
    return patched, modified


def ensure_required_fields(message: GmailMessage) -> GmailMessage:
    """Guarantee a non-empty internalDate; every other field is left as is."""
    if message.internalDate:
        return message
    return message.model_copy(update={"internalDate": EPOCH_INTERNAL_DATE})


def placeholder_message(message_id: str) -> GmailMessage:
    """Minimal valid message used when nothing real can be recovered."""
    return GmailMessage(
        id=message_id,
        threadId=message_id,
        labelIds=[],
        snippet="",
        historyId="0",
        internalDate=EPOCH_INTERNAL_DATE,
        payload=MessagePayload(mimeType=DEFAULT_MIME_TYPE, headers=[], body=MessageBody(size=0)),
        sizeEstimate=0,
    )


def _json_id(value: Any) -> Optional[str]:
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


def normalize_message(
    value: Any,
    message_id: Optional[str] = None,
    policy: RecoveryPolicy = DEFAULT_POLICY,
) -> GmailMessage:
    """Decode a parsed message, patching and falling back as needed."""
    try:
        return ensure_required_fields(decode_message(value))
    except MessageDecodeError as first:
        errors: List[MessageDecodeError] = [first]

    resolved_id = message_id or _json_id(value) or "unknown"
    if policy.should_patch(errors[0]):
        patched, modified = patch_message_json(value)
        logger.info("Message %s failed to decode (%s), retrying with patched fields", resolved_id, errors[0])
        try:
            return ensure_required_fields(decode_message(patched))
        except MessageDecodeError as second:
            errors.append(second)
        if not modified:
            logger.debug("Patch was a no-op for message %s", resolved_id)

    if policy.wants_placeholder(errors):
        logger.warning("Message %s unrecoverable (internalDate), using placeholder", resolved_id)
        return ensure_required_fields(placeholder_message(resolved_id))

    raise MessageFormatError(
        f"Failed to decode message {resolved_id}",
        message_id=resolved_id,
        errors=[str(err) for err in errors],
    )


def deserialize_message(
    raw_text: str,
    message_id: Optional[str] = None,
    policy: RecoveryPolicy = DEFAULT_POLICY,
) -> GmailMessage:
    """
    Parse, patch and decode raw message JSON text.

    Malformed JSON raises MessageDecodeError straight away: patching works on
    a parsed value, so there is nothing to repair.
    """
    return normalize_message(parse_json(raw_text), message_id=message_id, policy=policy)


# -----------------------------------------------------
# Fetch state machine
# -----------------------------------------------------
class FetchState(str, Enum):
    STANDARD_FETCH = "standard_fetch"
    PATCH_AND_RETRY = "patch_and_retry"
    MINIMAL_FORMAT_FETCH = "minimal_format_fetch"
    METADATA_FETCH = "metadata_fetch"
    PLACEHOLDER_MESSAGE = "placeholder_message"
    FORMAT_ERROR = "format_error"
    DONE = "done"


class MessageFetchMachine:
    """
    Drives one logical message fetch through the fallback states.

    Stages run strictly one after another; ``transitions`` records every
    state entered, in order.
    """

    def __init__(
        self,
        message_id: str,
        fetch: FetchFn,
        policy: RecoveryPolicy = DEFAULT_POLICY,
        metadata_headers: Optional[Sequence[str]] = None,
    ):
        self.message_id = message_id
        self._fetch = fetch
        self._policy = policy
        self._metadata_headers = list(metadata_headers or settings.GMAIL_METADATA_HEADERS)
        self.transitions: List[FetchState] = []
        self.errors: List[BaseException] = []
        self._raw: Any = None
        self._result: Optional[GmailMessage] = None

    async def run(self) -> GmailMessage:
        state = FetchState.STANDARD_FETCH
        while True:
            self.transitions.append(state)
            if state is FetchState.DONE:
                return ensure_required_fields(self._result)
            if state is FetchState.PLACEHOLDER_MESSAGE:
                logger.warning("Using placeholder for message %s after %s", self.message_id, self._trail())
                return ensure_required_fields(placeholder_message(self.message_id))
            if state is FetchState.FORMAT_ERROR:
                raise MessageFormatError(
                    f"Failed to retrieve message {self.message_id}",
                    message_id=self.message_id,
                    errors=[str(err) for err in self.errors],
                )
            handler = getattr(self, f"_on_{state.value}")
            state = await handler()
            logger.debug("Message %s: -> %s", self.message_id, state.value)

    def _trail(self) -> str:
        return " -> ".join(state.value for state in self.transitions)

    def _after_decode_failure(self, error: MessageDecodeError, next_state: FetchState) -> FetchState:
        self.errors.append(error)
        if self._policy.wants_placeholder(self.errors):
            return FetchState.PLACEHOLDER_MESSAGE
        return next_state

    async def _on_standard_fetch(self) -> FetchState:
        # Transport failures here are the caller's to handle
        self._raw = await self._fetch(self.message_id, "full")
        try:
            self._result = decode_message(self._raw)
            return FetchState.DONE
        except MessageDecodeError as exc:
            if self._policy.should_patch(exc):
                self.errors.append(exc)
                return FetchState.PATCH_AND_RETRY
            return self._after_decode_failure(exc, FetchState.MINIMAL_FORMAT_FETCH)

    async def _on_patch_and_retry(self) -> FetchState:
        patched, _ = patch_message_json(self._raw)
        try:
            self._result = decode_message(patched)
            return FetchState.DONE
        except MessageDecodeError as exc:
            return self._after_decode_failure(exc, FetchState.MINIMAL_FORMAT_FETCH)

    async def _on_minimal_format_fetch(self) -> FetchState:
        try:
            raw = await self._fetch(self.message_id, "minimal")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Minimal fetch failed for message %s: %s", self.message_id, exc)
            self.errors.append(exc)
            return FetchState.FORMAT_ERROR

        patched, _ = patch_message_json(raw)
        try:
            self._result = decode_message(patched)
        except MessageDecodeError as exc:
            return self._after_decode_failure(exc, FetchState.FORMAT_ERROR)

        if not self._result.payload.headers:
            return FetchState.METADATA_FETCH
        return FetchState.DONE

    async def _on_metadata_fetch(self) -> FetchState:
        try:
            raw = await self._fetch(self.message_id, "metadata", self._metadata_headers)
            patched, _ = patch_message_json(raw)
            headers = decode_message(patched).payload.headers
        except Exception as exc:  # noqa: BLE001
            logger.warning("Header fetch failed for message %s, keeping minimal result: %s", self.message_id, exc)
            return FetchState.DONE

        payload = self._result.payload.model_copy(update={"headers": headers})
        self._result = self._result.model_copy(update={"payload": payload})
        return FetchState.DONE


async def get_message_with_fallbacks(
    message_id: str,
    fetch: FetchFn,
    policy: RecoveryPolicy = DEFAULT_POLICY,
) -> GmailMessage:
    """Fetch one message, falling back through the reduced formats."""
    return await MessageFetchMachine(message_id, fetch, policy=policy).run()


# -----------------------------------------------------
# Summaries for tool output
# -----------------------------------------------------
def decode_mime_header(value: Optional[str]) -> str:
    if not value:
        return ""
    decoded_parts = []
    for fragment, encoding in decode_header(value):
        if isinstance(fragment, bytes):
            decoded_parts.append(fragment.decode(encoding or "utf-8", errors="replace"))
        else:
            decoded_parts.append(fragment)
    return "".join(decoded_parts).strip()


def parse_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        dt_obj = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return value
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
    return dt_obj.isoformat()


def _find_text(part: MessagePart, mime_type: str) -> Optional[str]:
    if part.mimeType == mime_type and part.body.kind == "data":
        try:
            return part.body.decoded_bytes().decode("utf-8", errors="replace")
        except ValueError:
            logger.debug("Skipping undecodable %s part %s", mime_type, part.partId)
    for child in part.parts:
        found = _find_text(child, mime_type)
        if found is not None:
            return found
    return None


def summarize_message(message: GmailMessage) -> Dict[str, Any]:
    payload = message.payload
    return {
        "id": message.id,
        "threadId": message.threadId,
        "subject": decode_mime_header(payload.header("Subject")),
        "from": decode_mime_header(payload.header("From")),
        "to": decode_mime_header(payload.header("To")),
        "date": parse_date(payload.header("Date")),
        "snippet": message.snippet,
        "labelIds": list(message.labelIds),
        "internalDate": message.internalDate,
        "body_text": _find_text(payload, "text/plain"),
        "body_html": _find_text(payload, "text/html"),
    }
