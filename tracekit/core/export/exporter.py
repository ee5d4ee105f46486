"""Span exporters for sending finished spans to a backend."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

import httpx

from tracekit.core.errors import TransmissionError
from tracekit.core.tracing.span import Span

logger = logging.getLogger(__name__)


class SpanExporter:
    """Base class for span exporters.

    ``export`` either returns normally (the batch was accepted) or raises
    ``TransmissionError``. It is only ever called from the pipeline worker.
    """

    def export(self, spans: Sequence[Span]) -> None:
        """Export spans."""
        raise NotImplementedError

    def shutdown(self) -> None:
        """Shutdown the exporter."""
        pass


class ConsoleSpanExporter(SpanExporter):
    """Exports spans to console for debugging."""

    def __init__(self, pretty: bool = True):
        self.pretty = pretty

    def export(self, spans: Sequence[Span]) -> None:
        for span in spans:
            data = span.to_dict()
            if self.pretty:
                print(json.dumps(data, indent=2, default=str))
            else:
                print(json.dumps(data, default=str))


class InMemorySpanExporter(SpanExporter):
    """Exports spans to memory for testing."""

    def __init__(self):
        self._batches: List[List[Span]] = []
        self._lock = threading.Lock()
        self.is_shutdown = False

    def export(self, spans: Sequence[Span]) -> None:
        with self._lock:
            self._batches.append(list(spans))

    def get_batches(self) -> List[List[Span]]:
        with self._lock:
            return [list(batch) for batch in self._batches]

    def get_spans(self) -> List[Span]:
        with self._lock:
            return [span for batch in self._batches for span in batch]

    def clear(self) -> None:
        with self._lock:
            self._batches.clear()

    def shutdown(self) -> None:
        self.is_shutdown = True


class HTTPCollectorExporter(SpanExporter):
    """POSTs span batches as JSON to a collector endpoint."""

    API_KEY_HEADER = "X-API-Key"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        use_ssl: bool = False,
        path: str = "/v1/traces",
        timeout: float = 10.0,
        resource: Optional[Dict[str, Any]] = None,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize HTTP collector exporter.

        Args:
            endpoint: Collector ``host:port``, or a full URL
            api_key: Value sent in the ``X-API-Key`` header
            use_ssl: Use https when ``endpoint`` has no scheme
            path: Request path appended to the endpoint
            timeout: Per-request timeout in seconds
            resource: Process-level attributes sent with every batch
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.url = self.build_url(endpoint, use_ssl, path)
        self.resource = resource or {}
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)
        self.headers = {
            self.API_KEY_HEADER: api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def build_url(endpoint: str, use_ssl: bool, path: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            base = endpoint
        else:
            base = f"{'https' if use_ssl else 'http'}://{endpoint}"
        return base.rstrip("/") + "/" + path.lstrip("/")

    def serialize(self, spans: Sequence[Span]) -> Dict[str, Any]:
        return {
            "resource": self.resource,
            "spans": [span.to_dict() for span in spans],
        }

    def export(self, spans: Sequence[Span]) -> None:
        payload = self.serialize(spans)
        try:
            response = self.client.post(
                self.url,
                content=json.dumps(payload, default=str),
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise TransmissionError(f"Failed to reach collector at {self.url}: {e}") from e

        if not response.is_success:
            raise TransmissionError(
                f"Collector at {self.url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

    def shutdown(self) -> None:
        if self._owns_client:
            self.client.close()
