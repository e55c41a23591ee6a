"""
Tests for message patching, decoding and the placeholder fallback.
"""
import copy
import json

import pytest

from mailbridge.schemas.gmail import GmailMessage, MessageBody, MessagePart
from mailbridge.tools.gmail_message import (
    RecoveryPolicy,
    deserialize_message,
    ensure_required_fields,
    normalize_message,
    patch_message_json,
    placeholder_message,
    summarize_message,
)
from mailbridge.utils.encoding import encode_base64_url_safe
from mailbridge.utils.errors import (
    DecodeIssue,
    IssueKind,
    MessageDecodeError,
    MessageFormatError,
)


def b64(text):
    return encode_base64_url_safe(text.encode("utf-8"))


def complete_message(**overrides):
    message = {
        "id": "abc",
        "threadId": "thread-1",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Hello there",
        "internalDate": "1712000000000",
        "historyId": "42",
        "sizeEstimate": 1024,
        "payload": {
            "partId": "",
            "mimeType": "text/plain",
            "filename": "",
            "headers": [
                {"name": "Subject", "value": "Greetings"},
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com"},
                {"name": "Date", "value": "Tue, 01 Apr 2025 12:34:56 +0000"},
            ],
            "body": {"size": 11, "data": b64("Hello there")},
        },
    }
    message.update(overrides)
    return message


# -----------------------------------------------------
# patch_message_json
# -----------------------------------------------------
def test_patch_fills_every_default():
    patched, modified = patch_message_json({"id": "m1"})
    assert modified is True
    assert patched == {
        "id": "m1",
        "internalDate": "0",
        "labelIds": [],
        "snippet": "",
        "threadId": "m1",
        "payload": {"headers": [], "mimeType": "text/plain"},
    }


def test_patch_treats_null_as_missing():
    patched, modified = patch_message_json(
        {"id": "m2", "internalDate": None, "labelIds": None, "snippet": None, "threadId": None, "payload": None}
    )
    assert modified is True
    assert patched["internalDate"] == "0"
    assert patched["labelIds"] == []
    assert patched["snippet"] == ""
    assert patched["threadId"] == "m2"
    assert patched["payload"] == {"headers": [], "mimeType": "text/plain"}


def test_patch_never_overwrites_present_values():
    original = complete_message(snippet="", labelIds=[])
    patched, modified = patch_message_json(original)
    assert modified is False
    assert patched == original


def test_patch_fills_payload_fields_only_when_missing():
    patched, modified = patch_message_json(
        {"id": "m3", "threadId": "t", "payload": {"mimeType": "multipart/mixed", "headers": None}}
    )
    assert modified is True
    assert patched["payload"] == {"mimeType": "multipart/mixed", "headers": []}


def test_patch_uses_unknown_thread_when_id_missing():
    patched, _ = patch_message_json({})
    assert patched["threadId"] == "unknown"


def test_patch_does_not_mutate_input():
    original = {"id": "m4", "payload": {"headers": [{"name": "Subject", "value": "x"}]}}
    snapshot = copy.deepcopy(original)
    patch_message_json(original)
    assert original == snapshot


@pytest.mark.parametrize("value", [None, [], "text", 7])
def test_patch_ignores_non_objects(value):
    assert patch_message_json(value) == (value, False)


def test_patch_leaves_non_object_payload_alone():
    patched, _ = patch_message_json({"id": "m5", "payload": "garbage"})
    assert patched["payload"] == "garbage"


# -----------------------------------------------------
# ensure_required_fields / placeholder
# -----------------------------------------------------
def test_ensure_required_fields_fills_empty_internal_date():
    message = GmailMessage.model_validate(complete_message(internalDate=""))
    fixed = ensure_required_fields(message)
    assert fixed.internalDate == "0"
    assert fixed.model_dump(exclude={"internalDate"}) == message.model_dump(exclude={"internalDate"})


@pytest.mark.parametrize("internal_date", ["", "0", "1712000000000"])
def test_ensure_required_fields_is_idempotent(internal_date):
    message = GmailMessage.model_validate(complete_message(internalDate=internal_date))
    once = ensure_required_fields(message)
    assert ensure_required_fields(once) == once
    assert once.internalDate


def test_ensure_required_fields_keeps_present_date():
    message = GmailMessage.model_validate(complete_message())
    assert ensure_required_fields(message) is message


def test_placeholder_message_shape():
    message = placeholder_message("req-1")
    assert message.id == message.threadId == "req-1"
    assert message.labelIds == []
    assert message.snippet == ""
    assert message.historyId == "0"
    assert message.internalDate == "0"
    assert message.sizeEstimate == 0
    assert message.payload.mimeType == "text/plain"
    assert message.payload.headers == []
    assert message.payload.body.kind == "empty"
    assert message.payload.body.size == 0


# -----------------------------------------------------
# deserialize_message
# -----------------------------------------------------
def test_complete_message_decodes_unchanged():
    message = deserialize_message(json.dumps(complete_message()))
    assert message.id == "abc"
    assert message.threadId == "thread-1"
    assert message.internalDate == "1712000000000"
    assert message.payload.header("subject") == "Greetings"


def test_end_to_end_recovery_of_incomplete_message():
    raw = '{"id":"x7","payload":{"headers":[{"name":"Subject","value":"Hi"}]}}'
    message = deserialize_message(raw)

    assert message.id == "x7"
    assert message.threadId == "x7"
    assert message.internalDate == "0"
    assert message.labelIds == []
    assert message.snippet == ""
    assert message.payload.mimeType == "text/plain"
    assert [(h.name, h.value) for h in message.payload.headers] == [("Subject", "Hi")]


def test_malformed_json_is_decode_error_without_patching():
    with pytest.raises(MessageDecodeError) as excinfo:
        deserialize_message('{"id": "x7", ')
    assert excinfo.value.is_malformed
    assert "expected value" in str(excinfo.value)


def test_internal_date_type_failure_yields_placeholder():
    raw = json.dumps(complete_message(id="p1", internalDate=12345))
    message = deserialize_message(raw, message_id="p1")

    assert message.id == message.threadId == "p1"
    assert message.payload.body.kind == "empty"
    assert message.payload.body.size == 0
    assert message.internalDate == "0"


def test_placeholder_after_failed_patch_retry_mentioning_internal_date():
    raw = json.dumps({"id": "p2", "internalDate": {"seconds": 1}})
    message = deserialize_message(raw)
    assert message.id == "p2"
    assert message.threadId == "p2"
    assert message.historyId == "0"


def test_unrecoverable_message_raises_format_error_with_both_errors():
    raw = json.dumps({"id": "f1", "internalDate": "5", "labelIds": "INBOX"})
    with pytest.raises(MessageFormatError) as excinfo:
        deserialize_message(raw)

    error = excinfo.value
    assert error.message_id == "f1"
    assert len(error.errors) == 2
    assert "missing field `threadId`" in error.errors[0]
    assert "labelIds" in error.errors[1]
    assert "f1" in str(error)


def test_normalize_message_accepts_parsed_values():
    message = normalize_message({"id": "n1", "payload": {"mimeType": "text/html"}})
    assert message.payload.mimeType == "text/html"
    assert message.payload.headers == []


# -----------------------------------------------------
# RecoveryPolicy
# -----------------------------------------------------
def test_policy_patches_structured_missing_field():
    error = MessageDecodeError([DecodeIssue(IssueKind.MISSING_FIELD, "threadId", "Field required")])
    assert RecoveryPolicy(markers=()).should_patch(error)


def test_policy_text_markers_are_configurable():
    error = MessageDecodeError([DecodeIssue(IssueKind.MALFORMED, None, "expected value at line 1 column 1")])
    assert RecoveryPolicy().should_patch(error)
    assert not RecoveryPolicy(markers=()).should_patch(error)


def test_policy_type_mismatch_is_not_patched():
    error = MessageDecodeError([DecodeIssue(IssueKind.TYPE_MISMATCH, "labelIds", "Input should be a valid list")])
    assert not RecoveryPolicy().should_patch(error)


def test_policy_placeholder_matches_field_or_text():
    policy = RecoveryPolicy()
    by_field = MessageDecodeError([DecodeIssue(IssueKind.TYPE_MISMATCH, "internalDate", "bad")])
    by_text = ValueError("upstream complained about internalDate")
    other = MessageDecodeError([DecodeIssue(IssueKind.TYPE_MISMATCH, "labelIds", "bad")])
    assert policy.wants_placeholder([by_field])
    assert policy.wants_placeholder([by_text])
    assert not policy.wants_placeholder([other])


# -----------------------------------------------------
# Bodies and summaries
# -----------------------------------------------------
def test_body_variants():
    assert MessageBody(size=0).kind == "empty"
    assert MessageBody(size=3, data=b64("abc")).kind == "data"
    assert MessageBody(size=3, data=b64("abc"), attachmentId="att-1").kind == "attachment"
    assert MessageBody(size=3, data=b64("abc")).decoded_bytes() == b"abc"


def test_summary_of_nested_multipart_message():
    raw = complete_message(
        payload={
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "=?UTF-8?B?SGVsbG8gV29ybGQ=?="},
                {"name": "From", "value": "sender@example.com"},
                {"name": "Date", "value": "Mon, 15 Apr 2025 11:00:00 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "headers": [],
                    "parts": [
                        {"mimeType": "text/plain", "headers": [], "body": {"size": 5, "data": b64("plain")}},
                        {"mimeType": "text/html", "headers": [], "body": {"size": 11, "data": b64("<p>html</p>")}},
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "document.pdf",
                    "headers": [],
                    "body": {"size": 100, "attachmentId": "att-1"},
                },
            ],
        }
    )
    summary = summarize_message(deserialize_message(json.dumps(raw)))

    assert summary["subject"] == "Hello World"
    assert summary["from"] == "sender@example.com"
    assert summary["date"] == "2025-04-15T11:00:00+00:00"
    assert summary["body_text"] == "plain"
    assert summary["body_html"] == "<p>html</p>"
    assert summary["labelIds"] == ["INBOX", "UNREAD"]


def test_summary_of_placeholder_is_empty_but_valid():
    summary = summarize_message(placeholder_message("ph"))
    assert summary["id"] == "ph"
    assert summary["subject"] == ""
    assert summary["date"] is None
    assert summary["body_text"] is None


def test_models_are_immutable():
    part = MessagePart(mimeType="text/plain", headers=[])
    with pytest.raises(Exception):
        part.mimeType = "text/html"
