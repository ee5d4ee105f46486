"""Tests for sampling strategies."""

from __future__ import annotations

import pytest


class TestSampler:
    """Test sampling strategies."""

    def test_always_on_sampler(self):
        from tracekit.core.tracing import AlwaysOnSampler, TraceId

        result = AlwaysOnSampler().should_sample(None, TraceId.generate(), "test")
        assert result.decision is True

    def test_always_off_sampler(self):
        from tracekit.core.tracing import AlwaysOffSampler, TraceId

        result = AlwaysOffSampler().should_sample(None, TraceId.generate(), "test")
        assert result.decision is False

    def test_trace_id_ratio_is_deterministic(self):
        from tracekit.core.tracing import TraceId, TraceIdRatioSampler

        sampler = TraceIdRatioSampler(0.5)
        low = TraceId(high=1, low=0)
        high = TraceId(high=1, low=2 ** 64 - 1)

        assert sampler.should_sample(None, low, "test").decision is True
        assert sampler.should_sample(None, high, "test").decision is False

    def test_trace_id_ratio_bounds(self):
        from tracekit.core.tracing import TraceIdRatioSampler

        with pytest.raises(ValueError):
            TraceIdRatioSampler(1.5)

    def test_parent_based_follows_parent(self):
        from tracekit.core.tracing import (
            AlwaysOffSampler,
            ParentBasedSampler,
            SpanId,
            TraceContext,
            TraceFlags,
            TraceId,
        )

        sampler = ParentBasedSampler(AlwaysOffSampler())
        trace_id = TraceId.generate()

        # Root spans use the root sampler
        assert sampler.should_sample(TraceContext.empty(), trace_id, "root").decision is False

        sampled_parent = TraceContext(trace_id=trace_id, span_id=SpanId.generate())
        assert sampler.should_sample(sampled_parent, trace_id, "child").decision is True

        unsampled_parent = TraceContext(
            trace_id=trace_id,
            span_id=SpanId.generate(),
            trace_flags=TraceFlags.NOT_SAMPLED,
        )
        assert sampler.should_sample(unsampled_parent, trace_id, "child").decision is False

    @pytest.mark.parametrize(
        "rate,expected",
        [(1.0, "AlwaysOnSampler"), (0.0, "AlwaysOffSampler"), (0.25, "TraceIdRatioSampler(0.25)")],
    )
    def test_sampler_for_rate(self, rate, expected):
        from tracekit.core.tracing.sampler import sampler_for_rate

        assert sampler_for_rate(rate).description == f"ParentBased(root={expected})"
