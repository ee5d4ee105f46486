"""Tests for the tracer: span creation, parentage and shutdown."""

from __future__ import annotations

import asyncio
import threading

import pytest


class TestSpanCreation:
    """Test span creation and parent/child linkage."""

    def test_root_span_starts_new_trace(self, tracer):
        from tracekit.core.tracing import TraceContext

        ctx, span = tracer.start_span(TraceContext.empty(), "root")

        assert span.is_root
        assert ctx.has_active_span
        assert ctx.span_id == span.context.span_id
        assert span.resource["service.name"] == "test-service"
        assert span.resource["deployment.environment"] == "test"
        span.end()

    def test_none_context_is_a_root(self, tracer):
        _, span = tracer.start_span(None, "root")
        assert span.is_root
        span.end()

    def test_child_shares_trace_id(self, tracer):
        from tracekit.core.tracing import TraceContext

        parent_ctx, parent = tracer.start_span(TraceContext.empty(), "parent")
        child_ctx, child = tracer.start_span(parent_ctx, "child")

        assert child.context.trace_id == parent.context.trace_id
        assert child.parent_id == parent.context.span_id
        assert child_ctx.span_id != parent_ctx.span_id
        # The parent's context value is unchanged
        assert parent_ctx.span_id == parent.context.span_id

        child.end()
        parent.end()

    def test_remote_parent_is_continued(self, tracer):
        from tracekit.core.tracing import TraceContextPropagator

        inbound = TraceContextPropagator().extract({
            "traceparent": "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01",
        })
        ctx, span = tracer.start_span(inbound, "GET /api/data")

        assert span.context.trace_id.to_hex() == "0af7651916cd43dd8448eb211c80319c"
        assert span.parent_id.to_hex() == "b7ad6b7169203331"
        assert not ctx.is_remote
        span.end()

    def test_initial_attributes(self, tracer):
        _, span = tracer.start_span(None, "op", attributes={"db.system": "postgres"})
        assert span.attributes["db.system"] == "postgres"
        span.end()


class TestEndToEnd:
    """Test spans flowing from creation to the exporter."""

    def test_server_and_client_spans_exported_together(self, tracer, exporter):
        from tracekit.core.tracing import SpanKind, StatusCode, TraceContext

        ctx_a, span_a = tracer.start_span(TraceContext.empty(), "A", kind=SpanKind.SERVER)
        _, span_b = tracer.start_span(ctx_a, "B", kind=SpanKind.CLIENT)
        span_b.set_attribute("target.service", "svc2")
        span_b.set_status(StatusCode.OK)
        span_b.end()
        span_a.set_status(StatusCode.OK)
        span_a.end()

        assert tracer.force_flush(2.0)

        batches = exporter.get_batches()
        assert len(batches) == 1
        exported = {span.name: span for span in batches[0]}
        assert set(exported) == {"A", "B"}
        assert exported["B"].parent_id == exported["A"].context.span_id
        assert exported["B"].context.trace_id == exported["A"].context.trace_id
        assert exported["B"].attributes["target.service"] == "svc2"
        assert exported["A"].kind == SpanKind.SERVER
        assert exported["B"].kind == SpanKind.CLIENT

    def test_double_end_is_not_exported_twice(self, tracer, exporter):
        from tracekit.core.errors import SpanAlreadyEnded

        _, span = tracer.start_span(None, "once")
        span.end()
        with pytest.raises(SpanAlreadyEnded):
            span.end()

        assert tracer.force_flush(2.0)
        assert len(exporter.get_spans()) == 1

    def test_unsampled_spans_are_not_exported(self, exporter, pipeline):
        from tracekit.core.tracing import AlwaysOffSampler, ParentBasedSampler, Tracer

        tracer = Tracer(pipeline, sampler=ParentBasedSampler(AlwaysOffSampler()))
        ctx, parent = tracer.start_span(None, "parent")
        _, child = tracer.start_span(ctx, "child")

        assert not ctx.is_sampled()
        child.end()
        parent.end()

        assert tracer.force_flush(2.0)
        assert exporter.get_spans() == []


class TestContextManager:
    """Test start_as_current_span."""

    def test_span_ended_on_normal_exit(self, tracer, exporter):
        with tracer.start_as_current_span(None, "work") as (ctx, span):
            assert tracer.current_span() is span
            assert tracer.current_context() == ctx

        assert not span.is_recording()
        assert tracer.current_span() is None

    def test_span_ended_and_marked_on_exception(self, tracer):
        from tracekit.core.tracing import StatusCode

        with pytest.raises(ValueError):
            with tracer.start_as_current_span(None, "failing") as (_, span):
                raise ValueError("boom")

        assert not span.is_recording()
        assert span.status.code == StatusCode.ERROR
        assert span.events[0].name == "exception"
        assert span.events[0].attributes["exception.escaped"] is True

    def test_without_recording_exception(self, tracer):
        from tracekit.core.tracing import StatusCode

        with pytest.raises(KeyError):
            with tracer.start_as_current_span(None, "failing", record_exception=False) as (_, span):
                raise KeyError("missing")

        assert span.status.code == StatusCode.ERROR
        assert span.events == []

    def test_span_ended_inside_block_is_not_ended_again(self, tracer):
        with tracer.start_as_current_span(None, "manual") as (_, span):
            span.end()
        assert not span.is_recording()

    def test_nested_current_span(self, tracer):
        with tracer.start_as_current_span(None, "outer") as (outer_ctx, outer):
            with tracer.start_as_current_span(outer_ctx, "inner") as (_, inner):
                assert tracer.current_span() is inner
            assert tracer.current_span() is outer


class TestIsolation:
    """Test that concurrent executions never see each other's spans."""

    def test_threads_have_separate_stacks(self, tracer):
        barrier = threading.Barrier(2)
        seen = {}
        errors = []

        def worker(name):
            try:
                with tracer.start_as_current_span(None, name) as (_, span):
                    barrier.wait(timeout=2.0)
                    seen[name] = tracer.current_span() is span
                    barrier.wait(timeout=2.0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("t1", "t2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)

        assert errors == []
        assert seen == {"t1": True, "t2": True}

    def test_asyncio_tasks_have_separate_stacks(self, tracer):
        async def handler(name):
            with tracer.start_as_current_span(None, name) as (_, span):
                await asyncio.sleep(0.01)
                return tracer.current_span() is span

        async def main():
            return await asyncio.gather(*(handler(f"task-{i}") for i in range(5)))

        assert asyncio.run(main()) == [True] * 5

    def test_tracers_do_not_share_stacks(self, pipeline):
        from tracekit.core.tracing import Tracer

        first = Tracer(pipeline, service_name="first")
        second = Tracer(pipeline, service_name="second")

        _, span = first.start_span(None, "op")
        assert first.current_span() is span
        assert second.current_span() is None
        span.end()


class TestShutdown:
    """Test tracer shutdown."""

    def test_shutdown_force_ends_open_spans(self, tracer, exporter):
        from tracekit.core.tracing import StatusCode
        from tracekit.core.tracing.span import INCOMPLETE_AT_SHUTDOWN

        _, finished = tracer.start_span(None, "finished")
        finished.end()
        _, dangling = tracer.start_span(None, "dangling")
        dangling.set_status(StatusCode.ERROR, "half done")

        assert tracer.shutdown(timeout=2.0)

        assert not dangling.is_recording()
        assert dangling.attributes[INCOMPLETE_AT_SHUTDOWN] is True
        assert dangling.status.code == StatusCode.UNSET
        assert {s.name for s in exporter.get_spans()} == {"finished", "dangling"}
        assert tracer.open_span_count() == 0

    def test_spans_after_shutdown_are_not_exported(self, tracer, exporter, pipeline):
        tracer.shutdown(timeout=1.0)

        _, late = tracer.start_span(None, "late")
        late.set_attribute("still", "mutable")
        late.end()

        assert exporter.get_spans() == []
        assert pipeline.dropped_count == 0
        assert tracer.current_span() is None

    def test_shutdown_is_idempotent(self, tracer):
        assert tracer.shutdown(timeout=1.0)
        assert tracer.shutdown(timeout=1.0)
        assert tracer.is_shutdown
