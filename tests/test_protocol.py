"""Tests for the wire envelope parse/format helpers."""

import json

import pytest

from marcalink.protocol import (
    ProtocolError,
    Reply,
    Request,
    format_reply,
    format_request,
    parse_reply,
    parse_request,
)
from marcalink.storage.base import ErrorKind, Result


class TestParseRequest:
    def test_full_envelope(self):
        req = parse_request('{"act": "load_project", "id": "r1", "payload": {"projectID": "p1"}}')
        assert req.act == "load_project"
        assert req.id == "r1"
        assert req.payload == {"projectID": "p1"}

    def test_payload_defaults_to_empty(self):
        req = parse_request('{"act": "list_projects"}')
        assert req.payload == {}
        assert req.id is None

    def test_bytes_input(self):
        req = parse_request(b'{"act": "list_papers", "id": "x"}')
        assert req.act == "list_papers"

    def test_numeric_id_is_stringified(self):
        req = parse_request('{"act": "list_papers", "id": 7}')
        assert req.id == "7"

    def test_invalid_json(self):
        with pytest.raises(ProtocolError, match="Invalid JSON"):
            parse_request("{not json")

    def test_non_object(self):
        with pytest.raises(ProtocolError):
            parse_request("[1, 2]")

    def test_missing_act_keeps_request_id(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request('{"id": "r9", "payload": {}}')
        assert exc_info.value.request_id == "r9"
        assert "Missing act" in str(exc_info.value)

    def test_payload_must_be_object(self):
        with pytest.raises(ProtocolError):
            parse_request('{"act": "storage_get", "payload": [1]}')


class TestParseReply:
    def test_ok_reply(self):
        reply = parse_reply('{"act": "list_projects", "id": "a", "status": "ok", "payload": {"data": []}}')
        assert reply.ok
        assert reply.payload == {"data": []}

    def test_error_reply(self):
        reply = parse_reply(
            '{"act": "open_project", "id": "a", "status": "error", "message": "nope", "kind": "validation"}'
        )
        assert not reply.ok
        assert reply.message == "nope"
        assert reply.kind == "validation"

    def test_bad_status(self):
        with pytest.raises(ProtocolError):
            parse_reply('{"act": "x", "status": "maybe"}')


class TestFormatting:
    def test_format_request(self):
        text = format_request(Request(act="storage_set", payload={"items": {"a": 1}}, id="r1"))
        assert json.loads(text) == {"act": "storage_set", "id": "r1", "payload": {"items": {"a": 1}}}

    def test_format_reply_omits_empty_fields(self):
        data = json.loads(format_reply(Reply(act="connected", status="ok")))
        assert data == {"act": "connected", "id": None, "status": "ok"}

    def test_format_reply_keeps_unicode(self):
        text = format_reply(Reply(act="x", status="error", message="Projeto não encontrado"))
        assert "não" in text


class TestResultBridge:
    def test_success_roundtrip(self):
        reply = Reply.from_result("load_paper", "r1", Result.success({"id": "abc"}, "done"))
        assert reply.ok
        assert reply.payload == {"data": {"id": "abc"}, "message": "done"}
        result = reply.to_result()
        assert result.ok
        assert result.data == {"id": "abc"}
        assert result.message == "done"

    def test_failure_keeps_kind(self):
        reply = Reply.from_result("open_project", "r1", Result.failure("bad", kind=ErrorKind.VALIDATION))
        assert reply.kind == "validation"
        result = reply.to_result()
        assert not result.ok
        assert result.kind is ErrorKind.VALIDATION

    def test_unknown_kind_maps_to_backend(self):
        result = Reply(act="x", status="error", message="m", kind="weird").to_result()
        assert result.kind is ErrorKind.BACKEND
