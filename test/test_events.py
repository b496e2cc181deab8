"""
Tests for webhook payload parsing.
"""

import json

import pytest

from vetcall.webhooks.events import (
    ASYNC_MESSAGE_TYPES,
    SYNC_MESSAGE_TYPES,
    EndOfCallReportMessage,
    MessageType,
    StatusUpdateMessage,
    ToolCallsMessage,
    UnknownMessage,
    parse_payload,
)


def body(message: dict) -> bytes:
    return json.dumps({"message": message}).encode()


class TestParsePayload:
    @pytest.mark.parametrize(
        "raw",
        [
            None,
            b"",
            b"not json",
            b"[1, 2, 3]",
            b'{"no_message": true}',
            b'{"message": "string"}',
            b'{"message": {"call": {}}}',
            b'{"message": {"type": ""}}',
        ],
    )
    def test_invalid_bodies_return_none(self, raw: bytes | None) -> None:
        assert parse_payload(raw) is None

    def test_tool_calls(self) -> None:
        payload = parse_payload(
            body(
                {
                    "type": "tool-calls",
                    "call": {"id": "call-1", "assistantId": "asst-1"},
                    "toolCallList": [{"id": "tc-1", "function": {"name": "x", "arguments": "{}"}}],
                }
            )
        )

        assert payload is not None
        assert isinstance(payload.message, ToolCallsMessage)
        assert payload.message.call_id == "call-1"
        assert payload.message.assistant_id == "asst-1"
        assert len(payload.message.tool_call_list) == 1

    def test_status_update(self) -> None:
        payload = parse_payload(body({"type": "status-update", "status": "ringing", "call": {"id": "c"}}))

        assert isinstance(payload.message, StatusUpdateMessage)
        assert payload.message.status == "ringing"

    def test_end_of_call_report_keeps_extra_fields(self) -> None:
        payload = parse_payload(
            body(
                {
                    "type": "end-of-call-report",
                    "endedReason": "customer-ended-call",
                    "analysis": {"summary": "Owner confirmed meds"},
                    "somethingNew": 1,
                }
            )
        )

        message = payload.message
        assert isinstance(message, EndOfCallReportMessage)
        assert message.ended_reason == "customer-ended-call"
        assert message.analysis == {"summary": "Owner confirmed meds"}
        assert message.model_extra["somethingNew"] == 1
        assert message.call_id is None

    def test_unknown_type_parsed_as_unknown(self) -> None:
        payload = parse_payload(body({"type": "voice-input", "call": {"id": "c"}}))

        assert isinstance(payload.message, UnknownMessage)
        assert payload.message_type == "voice-input"

    def test_malformed_known_type_returns_none(self) -> None:
        assert parse_payload(body({"type": "tool-calls", "toolCallList": "nope"})) is None

    def test_malformed_fire_and_forget_type_degrades_to_unknown(self) -> None:
        raw = {"message": {"type": "status-update", "status": "ended", "call": {"id": 12345}}}

        payload = parse_payload(json.dumps(raw))

        assert isinstance(payload.message, UnknownMessage)
        assert payload.message_type == "status-update"
        assert payload.message.call is None
        assert payload.raw == raw

    def test_malformed_request_type_with_bad_call_returns_none(self) -> None:
        assert parse_payload(body({"type": "assistant-request", "call": {"id": 12345}})) is None

    def test_raw_envelope_kept(self) -> None:
        raw = {"message": {"type": "hang", "call": {"id": "c"}}, "extra": True}
        payload = parse_payload(json.dumps(raw))
        assert payload.raw == raw


class TestMessageTypeSets:
    def test_sync_and_async_partition_all_types(self) -> None:
        assert SYNC_MESSAGE_TYPES | ASYNC_MESSAGE_TYPES == set(MessageType)
        assert not SYNC_MESSAGE_TYPES & ASYNC_MESSAGE_TYPES
        assert MessageType.TOOL_CALLS in SYNC_MESSAGE_TYPES
        assert MessageType.END_OF_CALL_REPORT in ASYNC_MESSAGE_TYPES
