"""Sampling Strategies.

Decides at span start whether a trace is recorded for export:
- Always on/off sampling
- Trace-ID ratio sampling
- Parent-based sampling
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from tracekit.core.tracing.context import TraceContext, TraceId


@dataclass
class SamplingResult:
    """Result of a sampling decision."""
    decision: bool
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def drop(cls) -> "SamplingResult":
        return cls(decision=False)

    @classmethod
    def record(cls, attributes: Optional[Dict[str, Any]] = None) -> "SamplingResult":
        return cls(decision=True, attributes=attributes or {})


class Sampler(ABC):
    """Base class for samplers."""

    @abstractmethod
    def should_sample(
        self,
        parent_context: Optional[TraceContext],
        trace_id: TraceId,
        name: str,
        kind: Any = None,
    ) -> SamplingResult:
        """Decide whether to sample a span."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Get a description of this sampler."""


class AlwaysOnSampler(Sampler):
    """Always sample."""

    def should_sample(self, parent_context, trace_id, name, kind=None) -> SamplingResult:
        return SamplingResult.record()

    @property
    def description(self) -> str:
        return "AlwaysOnSampler"


class AlwaysOffSampler(Sampler):
    """Never sample."""

    def should_sample(self, parent_context, trace_id, name, kind=None) -> SamplingResult:
        return SamplingResult.drop()

    @property
    def description(self) -> str:
        return "AlwaysOffSampler"


class TraceIdRatioSampler(Sampler):
    """Sample based on trace ID ratio.

    Uses the low 64 bits of the trace ID, so every service sharing the same
    ratio reaches the same decision for a given trace.
    """

    def __init__(self, ratio: float):
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"Ratio must be between 0.0 and 1.0, got {ratio}")

        self.ratio = ratio
        self._threshold = int(ratio * (2 ** 64 - 1))

    def should_sample(self, parent_context, trace_id, name, kind=None) -> SamplingResult:
        if self.ratio >= 1.0 or trace_id.low < self._threshold:
            return SamplingResult.record({"sampling.probability": self.ratio})
        return SamplingResult.drop()

    @property
    def description(self) -> str:
        return f"TraceIdRatioSampler({self.ratio})"


class ParentBasedSampler(Sampler):
    """Follow the parent's decision; defer to ``root_sampler`` for new traces."""

    def __init__(self, root_sampler: Optional[Sampler] = None):
        self.root_sampler = root_sampler or AlwaysOnSampler()

    def should_sample(self, parent_context, trace_id, name, kind=None) -> SamplingResult:
        if parent_context is None or not parent_context.has_active_span:
            return self.root_sampler.should_sample(parent_context, trace_id, name, kind)

        if parent_context.is_sampled():
            return SamplingResult.record()
        return SamplingResult.drop()

    @property
    def description(self) -> str:
        return f"ParentBased(root={self.root_sampler.description})"


def sampler_for_rate(sample_rate: float) -> Sampler:
    """Build the default sampler for a configured sampling rate."""
    if sample_rate >= 1.0:
        return ParentBasedSampler(AlwaysOnSampler())
    if sample_rate <= 0.0:
        return ParentBasedSampler(AlwaysOffSampler())
    return ParentBasedSampler(TraceIdRatioSampler(sample_rate))
