#!/usr/bin/env python3
"""
Test gateway frame parsing and session normalization
"""

import json

from gateway.protocol import (
    ChatMessage,
    ConnectChallenge,
    HelloOk,
    RequestFailed,
    SessionsListed,
    SessionSummary,
    parse_frame,
    request_frame,
)


def test_parse_challenge():
    frame = parse_frame(json.dumps(
        {"type": "event", "event": "connect.challenge", "payload": {"nonce": "abc", "ts": 1000}}
    ))

    assert isinstance(frame, ConnectChallenge)
    assert frame.nonce == "abc"
    assert frame.ts == 1000


def test_parse_hello_ok():
    frame = parse_frame(json.dumps(
        {"type": "res", "id": "1", "ok": True, "payload": {"type": "hello-ok", "protocol": 3}}
    ))

    assert isinstance(frame, HelloOk)
    assert frame.payload["protocol"] == 3


def test_parse_sessions_list_keeps_only_objects():
    frame = parse_frame(json.dumps(
        {"type": "res", "id": "2", "ok": True, "payload": {"sessions": [{"key": "s1"}, "junk", 4]}}
    ))

    assert isinstance(frame, SessionsListed)
    assert frame.sessions == [{"key": "s1"}]


def test_parse_chat_event():
    frame = parse_frame(json.dumps(
        {"type": "event", "event": "chat", "payload": {"sessionKey": "s1", "text": "hi"}}
    ))

    assert isinstance(frame, ChatMessage)
    assert frame.payload == {"sessionKey": "s1", "text": "hi"}
    assert frame.session_key == "s1"


def test_parse_failed_response():
    frame = parse_frame(json.dumps(
        {"type": "res", "id": "3", "ok": False, "error": {"message": "bad signature"}}
    ))

    assert isinstance(frame, RequestFailed)
    assert frame.id == "3"
    assert frame.message == "bad signature"


def test_unrecognized_frames_are_dropped():
    """Test malformed or unknown frames parse to None"""
    assert parse_frame("not json") is None
    assert parse_frame(b"\xff\xfe") is None
    assert parse_frame("[1, 2]") is None
    assert parse_frame(json.dumps({"type": "event", "event": "presence", "payload": {}})) is None
    assert parse_frame(json.dumps({"type": "res", "id": "x", "ok": True, "payload": {}})) is None
    assert parse_frame(json.dumps({"type": "req", "id": "x", "method": "ping"})) is None
    assert parse_frame(json.dumps(
        {"type": "event", "event": "connect.challenge", "payload": {"nonce": {"bad": 1}}}
    )) is None


def test_session_key_aliases_collapse():
    """Test every identifier alias resolves to `key`, by priority"""
    assert SessionSummary.from_raw({"sessionKey": "a"}).key == "a"
    assert SessionSummary.from_raw({"session_id": "b"}).key == "b"
    assert SessionSummary.from_raw({"id": "c"}).key == "c"
    assert SessionSummary.from_raw({"sessionId": "d"}).key == "d"
    assert SessionSummary.from_raw({"key": "k", "sessionKey": "a"}).key == "k"
    assert SessionSummary.from_raw({"displayName": "none"}).key is None


def test_session_summary_wire_form():
    """Test aliases are removed and unknown fields pass through"""
    summary = SessionSummary.from_raw(
        {"sessionKey": "s1", "updatedAt": 5, "totalTokens": 0, "channel": "telegram"}
    )

    wire = summary.to_wire()
    assert wire == {"key": "s1", "updatedAt": 5, "totalTokens": 0, "channel": "telegram"}


def test_request_frame_ids():
    first = request_frame("sessions.list", {"limit": 1})
    second = request_frame("sessions.list", {"limit": 1})

    assert first["type"] == "req"
    assert first["method"] == "sessions.list"
    assert first["params"] == {"limit": 1}
    assert first["id"] != second["id"]


def test_deeply_nested_frame_is_dropped():
    """Test nesting beyond the JSON decoder's recursion limit parses to None"""
    assert parse_frame("[" * 200000) is None


def test_session_summary_relays_non_string_fields():
    """Test fields other than the key keep whatever shape the gateway sent"""
    summary = SessionSummary.from_raw({
        "key": "s1",
        "displayName": 42,
        "model": {"id": "x"},
        "modelProvider": ["a", "b"],
        "lastMessage": ["x"],
        "lastRole": {"name": "assistant"},
    })

    assert summary.to_wire() == {
        "key": "s1",
        "displayName": 42,
        "model": {"id": "x"},
        "modelProvider": ["a", "b"],
        "lastMessage": ["x"],
        "lastRole": {"name": "assistant"},
    }
