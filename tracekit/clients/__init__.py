from tracekit.clients.http import AsyncTracedHTTPClient, TracedHTTPClient

__all__ = ["TracedHTTPClient", "AsyncTracedHTTPClient"]
