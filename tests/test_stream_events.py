"""Tests for stream event classification and extraction."""

from idebridge.stream.events import (
    EventKind,
    StreamEvent,
    classify,
    extract_cost,
    extract_error_message,
    extract_model,
    extract_text_delta,
    is_message_end,
)


def _delta(text):
    return StreamEvent({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
    })


class TestClassify:
    """Tests for mapping records to kinds."""

    def test_init(self):
        assert classify(StreamEvent({"type": "system", "subtype": "init"})) == EventKind.INIT

    def test_system_error(self):
        event = StreamEvent({"type": "system", "subtype": "error", "message": "boom"})
        assert classify(event) == EventKind.ERROR_SYSTEM

    def test_result(self):
        assert classify(StreamEvent({"type": "result", "subtype": "success"})) == EventKind.RESULT

    def test_stream_delta(self):
        assert classify(_delta("hi")) == EventKind.STREAM_DELTA

    def test_stream_stop(self):
        event = StreamEvent({"type": "stream_event", "event": {"type": "message_stop"}})
        assert classify(event) == EventKind.STREAM_STOP
        assert is_message_end(event)

    def test_everything_else_unclassified(self):
        for data in (
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}},
            {"type": "user"},
            {"type": "system", "subtype": "hook"},
            {"type": "stream_event", "event": {"type": "message_start"}},
            {"no_type": True},
            {"type": 7},
        ):
            assert classify(StreamEvent(data)) == EventKind.UNCLASSIFIED

    def test_kind_property(self):
        assert _delta("x").kind == EventKind.STREAM_DELTA


class TestTextDelta:
    """Tests for text extraction."""

    def test_content_block_delta(self):
        assert extract_text_delta(_delta("Hello")) == "Hello"

    def test_empty_text_is_none(self):
        assert extract_text_delta(_delta("")) is None

    def test_assistant_message_ignored(self):
        """Full assistant messages repeat the streamed text."""
        event = StreamEvent({
            "type": "assistant",
            "message": {"content": [{"type": "text", "text": "Hello"}]},
        })
        assert extract_text_delta(event) is None

    def test_result_text_ignored(self):
        event = StreamEvent({"type": "result", "result": "Hello"})
        assert extract_text_delta(event) is None

    def test_non_text_delta(self):
        event = StreamEvent({
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}},
        })
        assert extract_text_delta(event) is None

    def test_malformed_inner_event(self):
        assert extract_text_delta(StreamEvent({"type": "stream_event", "event": "oops"})) is None
        assert extract_text_delta(StreamEvent({
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": "oops"},
        })) is None


class TestResultExtraction:
    """Tests for cost and model extraction."""

    def test_cost(self):
        event = StreamEvent({"type": "result", "total_cost_usd": 0.42})
        assert extract_cost(event) == 0.42

    def test_integer_cost(self):
        assert extract_cost(StreamEvent({"type": "result", "total_cost_usd": 0})) == 0

    def test_cost_missing_or_invalid(self):
        assert extract_cost(StreamEvent({"type": "result"})) is None
        assert extract_cost(StreamEvent({"type": "result", "total_cost_usd": "0.42"})) is None
        assert extract_cost(StreamEvent({"type": "result", "total_cost_usd": True})) is None

    def test_cost_only_from_result(self):
        assert extract_cost(StreamEvent({"type": "system", "total_cost_usd": 1.0})) is None

    def test_model_usage_first_key(self):
        event = StreamEvent({
            "type": "result",
            "modelUsage": {"claude-x": {"inputTokens": 10}, "claude-y": {}},
        })
        assert extract_model(event) == "claude-x"

    def test_explicit_model_preferred(self):
        event = StreamEvent({"type": "result", "model": "claude-m", "modelUsage": {"claude-x": {}}})
        assert extract_model(event) == "claude-m"

    def test_model_missing(self):
        assert extract_model(StreamEvent({"type": "result"})) is None
        assert extract_model(StreamEvent({"type": "result", "modelUsage": {}})) is None


class TestErrorMessage:
    """Tests for system error messages."""

    def test_string_message(self):
        event = StreamEvent({"type": "system", "subtype": "error", "message": "rate limited"})
        assert extract_error_message(event) == "rate limited"

    def test_nested_message(self):
        event = StreamEvent({"type": "system", "subtype": "error", "message": {"message": "overloaded"}})
        assert extract_error_message(event) == "overloaded"

    def test_missing_message(self):
        event = StreamEvent({"type": "system", "subtype": "error"})
        assert extract_error_message(event) == "Unknown error"

    def test_other_values_stringified(self):
        event = StreamEvent({"type": "system", "subtype": "error", "message": 503})
        assert extract_error_message(event) == "503"
