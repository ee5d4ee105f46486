"""Tests for span mutation and lifecycle."""

from __future__ import annotations

import pytest


def _make_span(name: str = "test-operation"):
    from tracekit.core.tracing import Span, SpanId, TraceContext, TraceId

    context = TraceContext(trace_id=TraceId.generate(), span_id=SpanId.generate())
    return Span(name=name, context=context)


class TestSpanAttributes:
    """Test attributes, events and status on an open span."""

    def test_set_attributes(self):
        span = _make_span()
        span.set_attribute("key1", "value1")
        span.set_attributes({"key2": 2, "key3": 1.5, "key4": True})

        assert span.attributes == {"key1": "value1", "key2": 2, "key3": 1.5, "key4": True}

    def test_last_write_wins(self):
        span = _make_span()
        span.set_attribute("k", "first")
        span.set_attribute("k", "second")
        assert span.attributes["k"] == "second"

    def test_unsupported_values_are_stringified(self):
        span = _make_span()
        span.set_attribute("items", [1, 2])
        assert span.attributes["items"] == "[1, 2]"

    def test_events_are_appended_in_time_order(self):
        span = _make_span()
        span.add_event("later", timestamp=200.0)
        span.add_event("earlier", {"attr": "value"}, timestamp=100.0)

        assert [e.name for e in span.events] == ["later", "earlier"]
        assert span.events[1].timestamp >= span.events[0].timestamp
        assert span.events[1].attributes == {"attr": "value"}

    def test_set_status_last_call_wins(self):
        from tracekit.core.tracing import StatusCode

        span = _make_span()
        span.set_status(StatusCode.ERROR, "boom")
        span.set_status(StatusCode.OK)
        assert span.status.code == StatusCode.OK
        assert span.status.description == ""

    def test_record_exception(self):
        from tracekit.core.tracing import StatusCode

        span = _make_span()
        try:
            raise ValueError("payment gateway timeout")
        except ValueError as e:
            span.record_exception(e)

        assert span.status.code == StatusCode.ERROR
        assert span.status.description == "payment gateway timeout"
        event = span.events[0]
        assert event.name == "exception"
        assert event.attributes["exception.type"] == "ValueError"
        assert "payment gateway timeout" in event.attributes["exception.stacktrace"]


class TestSpanLifecycle:
    """Test ending spans and post-end immutability."""

    def test_end_records_timestamp_and_state(self):
        from tracekit.core.tracing import SpanState

        span = _make_span()
        assert span.state == SpanState.OPEN
        assert span.duration_ms is None

        span.end()

        assert span.state == SpanState.ENDED
        assert span.end_time is not None
        assert span.end_time >= span.start_time
        assert span.duration_ms >= 0
        assert not span.is_recording()

    def test_end_twice_raises(self):
        from tracekit.core.errors import SpanAlreadyEnded

        span = _make_span()
        span.end()
        first_end = span.end_time

        with pytest.raises(SpanAlreadyEnded):
            span.end()
        assert span.end_time == first_end

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda s: s.set_attribute("k", "v"),
            lambda s: s.set_attributes({"k": "v"}),
            lambda s: s.add_event("late"),
            lambda s: s.set_status(s.status.code),
            lambda s: s.record_exception(RuntimeError("late")),
        ],
    )
    def test_mutation_after_end_raises(self, mutate):
        from tracekit.core.errors import SpanAlreadyEnded

        span = _make_span()
        span.end()
        with pytest.raises(SpanAlreadyEnded):
            mutate(span)
        assert span.attributes == {}
        assert span.events == []

    def test_end_invokes_callback_once(self):
        from tracekit.core.errors import SpanAlreadyEnded

        ended = []
        span = _make_span()
        span._on_end = ended.append

        span.end()
        with pytest.raises(SpanAlreadyEnded):
            span.end()

        assert ended == [span]

    def test_state_never_moves_backward(self):
        from tracekit.core.tracing import SpanState

        span = _make_span()
        span.end()
        span.transition(SpanState.QUEUED)
        span.transition(SpanState.BATCHED)
        span.transition(SpanState.QUEUED)
        assert span.state == SpanState.BATCHED

        span.transition(SpanState.DROPPED)
        span.transition(SpanState.TRANSMITTED)
        assert span.state == SpanState.DROPPED

    def test_to_dict(self):
        from tracekit.core.tracing import SpanKind

        span = _make_span("fetchUsers")
        span.kind = SpanKind.SERVER
        span.set_attribute("user_count", 5)
        span.add_event("users.fetched")
        span.end()

        data = span.to_dict()
        assert data["name"] == "fetchUsers"
        assert data["kind"] == "SERVER"
        assert data["parent_span_id"] is None
        assert len(data["trace_id"]) == 32
        assert len(data["span_id"]) == 16
        assert data["status"]["code"] == "UNSET"
        assert data["attributes"] == {"user_count": 5}
        assert data["events"][0]["name"] == "users.fetched"
