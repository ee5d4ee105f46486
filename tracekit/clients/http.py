"""Outbound HTTP clients that propagate trace context.

Every request runs inside a CLIENT span that is a child of the caller's
context. The derived context is injected into the outbound headers so the
receiving service continues the same trace.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from tracekit.core.tracing.context import CompositePropagator, Propagator, TraceContext
from tracekit.core.tracing.span import Span, SpanKind, StatusCode
from tracekit.core.tracing.tracer import Tracer

logger = logging.getLogger(__name__)


class _ClientSpanMixin:
    tracer: Tracer
    propagator: Propagator
    service_name_mappings: Dict[str, str]

    def resolve_service(self, url: str, target_service: Optional[str] = None) -> str:
        """Logical name of the service behind ``url``.

        An explicit ``target_service`` wins, then the ``host:port`` mapping,
        then the bare ``host:port``.
        """
        if target_service:
            return target_service
        parts = urlsplit(url)
        host = parts.hostname or ""
        try:
            port = parts.port or (443 if parts.scheme == "https" else 80)
        except ValueError:
            # Out-of-range or non-numeric port
            netloc = parts.netloc
        else:
            netloc = f"{host}:{port}"
        return self.service_name_mappings.get(netloc) or self.service_name_mappings.get(host) or netloc

    def _start_client_span(
        self,
        context: Optional[TraceContext],
        method: str,
        url: str,
        target_service: Optional[str],
        headers: Optional[Dict[str, str]],
    ) -> Tuple[Span, Dict[str, str]]:
        method = method.upper()
        service = self.resolve_service(url, target_service)
        child_context, span = self.tracer.start_span(
            context,
            f"HTTP {method}",
            kind=SpanKind.CLIENT,
            attributes={
                "target.service": service,
                "peer.service": service,
                "http.method": method,
                "http.url": url,
            },
        )
        outbound = dict(headers or {})
        self.propagator.inject(child_context, outbound)
        return span, outbound

    @staticmethod
    def _finish(span: Span, response: Optional[httpx.Response] = None,
                error: Optional[BaseException] = None) -> None:
        if not span.is_recording():
            return
        if error is not None:
            transport = isinstance(error, httpx.TransportError)
            span.record_exception(error, {"error.transport": transport})
        elif response is not None:
            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 400:
                span.set_status(StatusCode.ERROR, f"HTTP {response.status_code}")
            else:
                span.set_status(StatusCode.OK)
        span.end()


class TracedHTTPClient(_ClientSpanMixin):
    """Synchronous httpx client wrapper."""

    def __init__(
        self,
        tracer: Tracer,
        propagator: Optional[Propagator] = None,
        service_name_mappings: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.tracer = tracer
        self.propagator = propagator or CompositePropagator()
        self.service_name_mappings = dict(service_name_mappings or {})
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def request(
        self,
        context: Optional[TraceContext],
        method: str,
        url: str,
        target_service: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue a request inside a CLIENT span.

        Errors raised by the request are recorded on the span and re-raised.
        """
        span, outbound = self._start_client_span(context, method, url, target_service, headers)
        try:
            response = self.client.request(method, url, headers=outbound, **kwargs)
        except Exception as e:
            logger.debug(f"Outbound {method} {url} failed: {e}")
            self._finish(span, error=e)
            raise
        except BaseException:
            self._finish(span)
            raise
        self._finish(span, response=response)
        return response

    def get(self, context: Optional[TraceContext], url: str, **kwargs: Any) -> httpx.Response:
        return self.request(context, "GET", url, **kwargs)

    def post(self, context: Optional[TraceContext], url: str, **kwargs: Any) -> httpx.Response:
        return self.request(context, "POST", url, **kwargs)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "TracedHTTPClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class AsyncTracedHTTPClient(_ClientSpanMixin):
    """Asynchronous httpx client wrapper."""

    def __init__(
        self,
        tracer: Tracer,
        propagator: Optional[Propagator] = None,
        service_name_mappings: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.tracer = tracer
        self.propagator = propagator or CompositePropagator()
        self.service_name_mappings = dict(service_name_mappings or {})
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def request(
        self,
        context: Optional[TraceContext],
        method: str,
        url: str,
        target_service: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        span, outbound = self._start_client_span(context, method, url, target_service, headers)
        try:
            response = await self.client.request(method, url, headers=outbound, **kwargs)
        except Exception as e:
            logger.debug(f"Outbound {method} {url} failed: {e}")
            self._finish(span, error=e)
            raise
        except BaseException:
            self._finish(span)
            raise
        self._finish(span, response=response)
        return response

    async def get(self, context: Optional[TraceContext], url: str, **kwargs: Any) -> httpx.Response:
        return await self.request(context, "GET", url, **kwargs)

    async def post(self, context: Optional[TraceContext], url: str, **kwargs: Any) -> httpx.Response:
        return await self.request(context, "POST", url, **kwargs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "AsyncTracedHTTPClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
