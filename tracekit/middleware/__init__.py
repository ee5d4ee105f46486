from tracekit.middleware.tracing import TracingMiddleware, get_trace_context

__all__ = ["TracingMiddleware", "get_trace_context"]
