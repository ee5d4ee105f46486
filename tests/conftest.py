import os
import pytest


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "TRACEKIT_API_KEY",
    "TRACEKIT_SERVICE_NAME",
    "TRACEKIT_ENVIRONMENT",
    "TRACEKIT_ENDPOINT",
    "TRACEKIT_USE_SSL",
    "TRACEKIT_SAMPLE_RATE",
    "TRACEKIT_MAX_QUEUE_SIZE",
    "TRACEKIT_BATCH_SIZE",
    "TRACEKIT_LINGER_MS",
    "TRACEKIT_MAX_RETRIES",
    "TRACEKIT_SERVICE_NAME_MAPPINGS",
    "TRACEKIT_TRACES_PATH",
    "TRACEKIT_INITIAL_BACKOFF_MS",
    "TRACEKIT_MAX_BACKOFF_MS",
    "TRACEKIT_BACKOFF_MULTIPLIER",
    "TRACEKIT_EXPORT_TIMEOUT_S",
    "TRACEKIT_SHUTDOWN_TIMEOUT_S",
    "TRACEKIT_LOG_LEVEL",
    "TRACEKIT_ENABLE_CODE_MONITORING",
    "SERVICE_NAME",
    "ENVIRONMENT",
]


@pytest.fixture(autouse=True)
def env_isolation(tmp_path, monkeypatch):
    """Isolate environment variables (and any .env file) between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    for k in _ENV_VARS_TO_ISOLATE:
        os.environ.pop(k, None)
    monkeypatch.chdir(tmp_path)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture
def exporter():
    from tracekit.core.export.exporter import InMemorySpanExporter

    return InMemorySpanExporter()


@pytest.fixture
def pipeline(exporter):
    """Pipeline with a long linger so tests decide when batches go out."""
    from tracekit.core.export.pipeline import ExportPipeline

    p = ExportPipeline(exporter, max_queue_size=100, batch_size=50, linger_ms=60_000)
    yield p
    p.shutdown(timeout=1.0)


@pytest.fixture
def tracer(pipeline):
    from tracekit.core.tracing.tracer import Tracer

    t = Tracer(pipeline, service_name="test-service", environment="test")
    yield t
    t.shutdown(timeout=1.0)
