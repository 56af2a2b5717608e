"""Tests for inbound payload validation."""

import pytest

from errors import ValidationError
from models import ChatRequest, ChatTurn, resolve_candidates
from validator import validate_candidate_models, validate_chat_payload, wants_stream

MAX = 20_000


class TestValidateChatPayload:
    """Test chat payload validation."""

    def test_single_message(self):
        req = validate_chat_payload({"message": "hello"}, MAX)
        assert req == ChatRequest(message="hello")
        assert req.is_conversation is False
        assert req.as_turns() == [{"role": "user", "content": "hello"}]

    def test_turn_list(self):
        payload = {
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
                {"role": "user", "content": "again"},
            ]
        }
        req = validate_chat_payload(payload, MAX)
        assert req.is_conversation is True
        assert req.turns[0] == ChatTurn(role="system", content="be brief")
        assert [t["role"] for t in req.as_turns()] == ["system", "user", "assistant", "user"]

    def test_messages_preferred_over_message(self):
        req = validate_chat_payload(
            {"message": "ignored", "messages": [{"role": "user", "content": "used"}]}, MAX
        )
        assert req.message is None
        assert req.turns == (ChatTurn(role="user", content="used"),)

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"message": ""},
            {"message": "   "},
            {"message": None},
            {"messages": []},
        ],
    )
    def test_empty_rejected(self, payload):
        with pytest.raises(ValidationError) as exc:
            validate_chat_payload(payload, MAX)
        assert exc.value.status_code == 400

    @pytest.mark.parametrize(
        "payload,fragment",
        [
            ({"messages": "hello"}, "must be an array"),
            ({"messages": {"role": "user"}}, "must be an array"),
            ({"messages": ["hello"]}, "must be an object"),
            ({"messages": [{"role": "tool", "content": "x"}]}, "role"),
            ({"messages": [{"role": "user", "content": 5}]}, "content"),
            ({"messages": [{"role": "user", "content": "  "}]}, "empty"),
            ({"message": 42}, "must be a string"),
        ],
    )
    def test_malformed_rejected(self, payload, fragment):
        with pytest.raises(ValidationError, match=fragment):
            validate_chat_payload(payload, MAX)

    def test_non_object_body(self):
        with pytest.raises(ValidationError, match="expected object"):
            validate_chat_payload(["message"], MAX)

    def test_oversized_message(self):
        with pytest.raises(ValidationError) as exc:
            validate_chat_payload({"message": "x" * 101}, 100)
        assert exc.value.status_code == 413
        assert "too large" in exc.value.message

    def test_oversized_turns(self):
        payload = {"messages": [{"role": "user", "content": "y" * 60}] * 3}
        with pytest.raises(ValidationError) as exc:
            validate_chat_payload(payload, 100)
        assert exc.value.status_code == 413

    def test_size_counts_utf8_bytes(self):
        # 40 characters, 80 bytes
        assert validate_chat_payload({"message": "é" * 40}, 90).message == "é" * 40
        with pytest.raises(ValidationError):
            validate_chat_payload({"message": "é" * 40}, 60)


class TestCandidateModels:
    """Test candidate list handling."""

    def test_absent_or_empty_means_default(self):
        assert validate_candidate_models(None) is None
        assert validate_candidate_models([]) is None

    def test_valid_list(self):
        assert validate_candidate_models([" a ", "b"]) == ["a", "b"]

    @pytest.mark.parametrize("value", ["gpt-4o", ["ok", ""], ["ok", 3]])
    def test_invalid_list(self, value):
        with pytest.raises(ValidationError):
            validate_candidate_models(value)

    def test_caller_list_overrides_default(self):
        assert resolve_candidates(["x", "y"], ("m1", "m2")) == ("x", "y")

    def test_default_used_when_caller_silent(self):
        assert resolve_candidates(None, ("m1", "m2")) == ("m1", "m2")
        assert resolve_candidates([], ("m1",)) == ("m1",)

    def test_duplicates_dropped_in_order(self):
        assert resolve_candidates(["b", "a", "b"], ()) == ("b", "a")

    def test_empty_resolution_rejected(self):
        with pytest.raises(ValueError):
            resolve_candidates(None, ())


class TestWantsStream:
    """Test streaming preference detection."""

    def test_body_flag_wins(self):
        assert wants_stream({"stream": True}, None, None) is True
        assert wants_stream({"stream": False}, "1", "text/event-stream") is False

    def test_query(self):
        assert wants_stream({}, "1", None) is True
        assert wants_stream({}, "true", None) is True
        assert wants_stream({}, "0", None) is False

    def test_accept_header(self):
        assert wants_stream({}, None, "text/event-stream") is True
        assert wants_stream({}, None, "application/x-ndjson-stream") is True
        assert wants_stream({}, None, "application/json") is False
        assert wants_stream({}, None, None) is False
