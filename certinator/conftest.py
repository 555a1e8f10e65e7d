import socket
import threading
import time

import pytest
import requests
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from certinator.handlers import register_pages
from certinator.server import ServerShell
from certinator.telemetry import Telemetry, init_metrics, init_tracing


class CountingTelemetry(Telemetry):
    """Telemetry that remembers how many times it was flushed"""

    def __init__(self, tracing, metrics, fail=False):
        super().__init__(tracing, metrics)
        self.flushes = 0
        self.fail = fail

    def flush(self):
        self.flushes += 1
        super().flush()
        if self.fail:
            raise RuntimeError("collector went away")


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def telemetry(span_exporter):
    tracing = init_tracing("certinator-test", "", exporter=span_exporter)
    return CountingTelemetry(tracing, init_metrics())


@pytest.fixture
def finished_spans(telemetry, span_exporter):
    def _spans():
        telemetry.tracing.provider.force_flush()
        return span_exporter.get_finished_spans()
    return _spans


@pytest.fixture
def server(telemetry):
    return ServerShell("certinator-test", telemetry, 8080, shutdown_grace=0.05, host="127.0.0.1")


@pytest.fixture
def client(server):
    register_pages(server)
    return server.build_app().test_client()


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_until_up(port, timeout=10.0):
    #poll the health check until the listener answers
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if requests.get(f"http://127.0.0.1:{port}/health", timeout=1).status_code == 200:
                return True
        except requests.ConnectionError:
            pass
        time.sleep(0.05)
    return False


@pytest.fixture
def running_server(telemetry, free_port):
    """Start a real server on a background thread, signals are not installed"""
    shell = ServerShell("certinator-test", telemetry, free_port, shutdown_grace=0.05, host="127.0.0.1")
    register_pages(shell)
    errors = []

    def _serve():
        try:
            shell.start(handle_signals=False)
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=_serve, daemon=True)
    thread.start()
    assert wait_until_up(free_port), errors
    yield shell, thread
    if thread.is_alive():
        shell.trigger_shutdown()
        thread.join(timeout=10)


@pytest.fixture
def wait_for_server():
    return wait_until_up
