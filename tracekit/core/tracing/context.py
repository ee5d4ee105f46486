"""Trace Context.

Provides trace context management:
- Trace and span IDs
- Immutable trace context values passed between calls
- Header propagation (W3C traceparent, B3)
"""

from __future__ import annotations

import logging
import random
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Mapping, MutableMapping, Optional

from tracekit.core.errors import PropagationDecodeError

logger = logging.getLogger(__name__)


def _require_hex(value: str) -> None:
    if not all(c in string.hexdigits for c in value):
        raise ValueError(f"Not a hex string: {value!r}")


class TraceFlags(Enum):
    """Trace flags for sampling decisions."""
    NOT_SAMPLED = 0x00
    SAMPLED = 0x01


@dataclass(frozen=True)
class TraceId:
    """128-bit trace identifier."""
    high: int  # Upper 64 bits
    low: int   # Lower 64 bits

    @classmethod
    def generate(cls) -> "TraceId":
        """Generate a new random, non-zero trace ID."""
        while True:
            trace_id = cls(high=random.getrandbits(64), low=random.getrandbits(64))
            if trace_id.is_valid():
                return trace_id

    @classmethod
    def from_hex(cls, hex_str: str) -> "TraceId":
        """Parse trace ID from 32-character hex string."""
        if len(hex_str) != 32:
            raise ValueError(f"Invalid trace ID length: {len(hex_str)}")
        _require_hex(hex_str)
        return cls(
            high=int(hex_str[:16], 16),
            low=int(hex_str[16:], 16),
        )

    def to_hex(self) -> str:
        """Convert to 32-character hex string."""
        return f"{self.high:016x}{self.low:016x}"

    def is_valid(self) -> bool:
        """Check if trace ID is valid (non-zero)."""
        return self.high != 0 or self.low != 0

    def __str__(self) -> str:
        return self.to_hex()


@dataclass(frozen=True)
class SpanId:
    """64-bit span identifier."""
    value: int

    @classmethod
    def generate(cls) -> "SpanId":
        """Generate a new random, non-zero span ID."""
        while True:
            value = random.getrandbits(64)
            if value:
                return cls(value=value)

    @classmethod
    def from_hex(cls, hex_str: str) -> "SpanId":
        """Parse span ID from 16-character hex string."""
        if len(hex_str) != 16:
            raise ValueError(f"Invalid span ID length: {len(hex_str)}")
        _require_hex(hex_str)
        return cls(value=int(hex_str, 16))

    def to_hex(self) -> str:
        """Convert to 16-character hex string."""
        return f"{self.value:016x}"

    def is_valid(self) -> bool:
        """Check if span ID is valid (non-zero)."""
        return self.value != 0

    def __str__(self) -> str:
        return self.to_hex()


@dataclass(frozen=True)
class TraceContext:
    """Immutable trace identity handed from one call to the next.

    ``span_id`` is the active span of the execution that owns this value.
    A context without an active span is a fresh root: the next span started
    from it begins a new trace.
    """
    trace_id: Optional[TraceId] = None
    span_id: Optional[SpanId] = None
    trace_flags: TraceFlags = TraceFlags.SAMPLED
    is_remote: bool = False

    @classmethod
    def empty(cls) -> "TraceContext":
        """Fresh root context with no active span."""
        return cls()

    @property
    def has_active_span(self) -> bool:
        return (
            self.trace_id is not None
            and self.span_id is not None
            and self.trace_id.is_valid()
            and self.span_id.is_valid()
        )

    def is_valid(self) -> bool:
        return self.has_active_span

    def is_sampled(self) -> bool:
        """Check if this context is sampled."""
        return self.trace_flags == TraceFlags.SAMPLED

    def with_span(
        self,
        span_id: SpanId,
        trace_id: Optional[TraceId] = None,
        trace_flags: Optional[TraceFlags] = None,
    ) -> "TraceContext":
        """Derive a context whose active span is ``span_id``."""
        return replace(
            self,
            trace_id=trace_id or self.trace_id,
            span_id=span_id,
            trace_flags=trace_flags or self.trace_flags,
            is_remote=False,
        )


def _get_header(carrier: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup. Non-text values are undecodable."""
    value = carrier.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in carrier.items():
            if isinstance(key, str) and key.lower() == lowered:
                value = candidate
                break
    if value is not None and not isinstance(value, str):
        raise PropagationDecodeError(
            f"header {name!r} has non-text value of type {type(value).__name__}"
        )
    return value


class Propagator(ABC):
    """Encodes a trace context into headers and back.

    Subclasses implement ``decode`` and raise ``PropagationDecodeError`` on
    bad input; ``extract`` turns any such failure into an empty context.
    """

    @abstractmethod
    def inject(self, context: TraceContext, carrier: MutableMapping[str, str]) -> None:
        """Inject trace context into carrier (headers)."""

    @abstractmethod
    def decode(self, carrier: Mapping[str, str]) -> TraceContext:
        """Parse the carrier, raising ``PropagationDecodeError`` on failure."""

    def extract(self, carrier: Optional[Mapping[str, str]]) -> TraceContext:
        """Extract trace context from carrier, falling back to a root context."""
        if not carrier:
            return TraceContext.empty()
        try:
            return self.decode(carrier)
        except PropagationDecodeError as e:
            logger.debug(f"Discarding inbound trace headers: {e}")
            return TraceContext.empty()


class TraceContextPropagator(Propagator):
    """W3C Trace Context propagation format.

    Implements the ``traceparent`` header of
    https://www.w3.org/TR/trace-context/
    """

    TRACEPARENT_HEADER = "traceparent"
    VERSION = "00"

    def inject(self, context: TraceContext, carrier: MutableMapping[str, str]) -> None:
        if not context.has_active_span:
            return

        # Format: {version}-{trace-id}-{parent-id}-{trace-flags}
        carrier[self.TRACEPARENT_HEADER] = (
            f"{self.VERSION}-"
            f"{context.trace_id.to_hex()}-"
            f"{context.span_id.to_hex()}-"
            f"{context.trace_flags.value:02x}"
        )

    def decode(self, carrier: Mapping[str, str]) -> TraceContext:
        traceparent = _get_header(carrier, self.TRACEPARENT_HEADER)
        if not traceparent:
            raise PropagationDecodeError("traceparent header missing")

        parts = traceparent.strip().split("-")
        if len(parts) < 4:
            raise PropagationDecodeError(f"malformed traceparent: {traceparent!r}")

        version, trace_id_hex, span_id_hex, flags_hex = parts[:4]
        if len(version) != 2 or version.lower() == "ff":
            raise PropagationDecodeError(f"unsupported version: {version!r}")
        # Later versions may append fields; version 00 must not
        if version == self.VERSION and len(parts) != 4:
            raise PropagationDecodeError(f"malformed traceparent: {traceparent!r}")
        if len(flags_hex) != 2:
            raise PropagationDecodeError(f"malformed trace flags: {flags_hex!r}")

        try:
            _require_hex(version + flags_hex)
            trace_id = TraceId.from_hex(trace_id_hex)
            span_id = SpanId.from_hex(span_id_hex)
            flags = TraceFlags(int(flags_hex, 16) & 0x01)
        except ValueError as e:
            raise PropagationDecodeError(str(e)) from e

        if not trace_id.is_valid() or not span_id.is_valid():
            raise PropagationDecodeError("all-zero trace or span id")

        return TraceContext(
            trace_id=trace_id,
            span_id=span_id,
            trace_flags=flags,
            is_remote=True,
        )


class B3Propagator(Propagator):
    """B3 propagation format (Zipkin-style).

    Supports both single-header and multi-header formats.
    """

    X_B3_TRACEID = "X-B3-TraceId"
    X_B3_SPANID = "X-B3-SpanId"
    X_B3_SAMPLED = "X-B3-Sampled"
    X_B3_FLAGS = "X-B3-Flags"
    B3_SINGLE = "b3"

    def __init__(self, single_header: bool = False):
        self.single_header = single_header

    def inject(self, context: TraceContext, carrier: MutableMapping[str, str]) -> None:
        if not context.has_active_span:
            return

        sampled = "1" if context.is_sampled() else "0"
        if self.single_header:
            # Format: {trace_id}-{span_id}-{sampling_state}
            carrier[self.B3_SINGLE] = (
                f"{context.trace_id.to_hex()}-{context.span_id.to_hex()}-{sampled}"
            )
            return

        carrier[self.X_B3_TRACEID] = context.trace_id.to_hex()
        carrier[self.X_B3_SPANID] = context.span_id.to_hex()
        carrier[self.X_B3_SAMPLED] = sampled

    def decode(self, carrier: Mapping[str, str]) -> TraceContext:
        b3_single = _get_header(carrier, self.B3_SINGLE)
        if b3_single:
            return self._decode_single(b3_single)

        trace_id_hex = _get_header(carrier, self.X_B3_TRACEID)
        span_id_hex = _get_header(carrier, self.X_B3_SPANID)
        if not trace_id_hex or not span_id_hex:
            raise PropagationDecodeError("B3 headers missing")

        sampled_str = _get_header(carrier, self.X_B3_SAMPLED) or ""
        flags_str = _get_header(carrier, self.X_B3_FLAGS) or ""

        if flags_str == "1":  # Debug flag means sampled
            sampled = True
        elif sampled_str in ("0", "false", "False"):
            sampled = False
        else:
            sampled = True

        return self._build(trace_id_hex, span_id_hex, sampled)

    def _decode_single(self, b3_value: str) -> TraceContext:
        parts = b3_value.strip().split("-")
        if len(parts) < 2:
            raise PropagationDecodeError(f"malformed b3 header: {b3_value!r}")

        sampled = True
        if len(parts) > 2:
            sampled = parts[2] in ("1", "d")  # 'd' is debug
        return self._build(parts[0], parts[1], sampled)

    def _build(self, trace_id_hex: str, span_id_hex: str, sampled: bool) -> TraceContext:
        # 64-bit trace IDs are left-padded to 128 bits
        if len(trace_id_hex) == 16:
            trace_id_hex = "0" * 16 + trace_id_hex
        try:
            trace_id = TraceId.from_hex(trace_id_hex)
            span_id = SpanId.from_hex(span_id_hex)
        except ValueError as e:
            raise PropagationDecodeError(str(e)) from e

        if not trace_id.is_valid() or not span_id.is_valid():
            raise PropagationDecodeError("all-zero trace or span id")

        return TraceContext(
            trace_id=trace_id,
            span_id=span_id,
            trace_flags=TraceFlags.SAMPLED if sampled else TraceFlags.NOT_SAMPLED,
            is_remote=True,
        )


class CompositePropagator(Propagator):
    """Composite propagator that supports multiple formats."""

    def __init__(self, propagators: Optional[List[Propagator]] = None):
        self.propagators = propagators or [
            TraceContextPropagator(),
            B3Propagator(),
        ]

    def inject(self, context: TraceContext, carrier: MutableMapping[str, str]) -> None:
        """Inject using all propagators."""
        for propagator in self.propagators:
            propagator.inject(context, carrier)

    def decode(self, carrier: Mapping[str, str]) -> TraceContext:
        """Decode using the first propagator that succeeds."""
        errors = []
        for propagator in self.propagators:
            try:
                return propagator.decode(carrier)
            except PropagationDecodeError as e:
                errors.append(str(e))
        raise PropagationDecodeError("; ".join(errors) or "no propagators configured")
