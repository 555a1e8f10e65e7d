import signal
import socket

import pytest
import requests
from flask import Response

from certinator.errors import ConfigError, StartError
from certinator.server import ServerShell, ShutdownTrigger, signal_name


@pytest.mark.parametrize("port", [0, -1, 65536, "8080", True])
def test_invalid_port(telemetry, port):
    with pytest.raises(ConfigError):
        ServerShell("certinator-test", telemetry, port)


def test_last_registration_wins(server):
    calls = []

    def handler_a(request):
        calls.append("a")
        return Response("a")

    def handler_b(request):
        calls.append("b")
        return Response("b")

    server.register_handler("/x", handler_a)
    server.register_handler("/x", handler_b)
    r = server.build_app().test_client().get("/x")
    assert r.get_data(as_text=True) == "b"
    assert calls == ["b"]


def test_exact_path_dispatch(client):
    r = client.get("/health/extra")
    assert r.status_code == 404
    assert r.get_data(as_text=True) == "404 page not found"
    assert client.get("/nope").status_code == 404


def test_routes_frozen_after_build(server):
    server.register_handler("/x", lambda request: Response("x"))
    server.build_app()
    with pytest.raises(RuntimeError):
        server.register_handler("/y", lambda request: Response("y"))
    assert set(server.routes) == {"/metrics", "/x"}


def test_metrics_route(server, client):
    client.get("/health")
    client.post("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "certinator_request_latency_seconds" in r.get_data(as_text=True)
    registry = server.telemetry.metrics.registry
    assert registry.get_sample_value(
        "certinator_request_count_total", {"route": "/health", "method": "GET", "status_code": "200"}) == 1.0
    assert registry.get_sample_value(
        "certinator_request_count_total", {"route": "/health", "method": "POST", "status_code": "404"}) == 1.0


def test_requests_are_traced(client, finished_spans):
    client.post("/create", data={"domain": "example.com"})
    spans = finished_spans()
    assert [s.name for s in spans] == ["/create"]
    assert spans[0].attributes["http.status_code"] == 200


def test_bind_failure(telemetry):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        port = taken.getsockname()[1]
        shell = ServerShell("certinator-test", telemetry, port, host="127.0.0.1")
        with pytest.raises(StartError):
            shell.start(handle_signals=False)
    assert telemetry.flushes == 0


def test_serves_over_http(running_server):
    shell, _ = running_server
    r = requests.post(f"http://127.0.0.1:{shell.port}/create", data={"domain": "example.com"}, timeout=5)
    assert r.status_code == 200
    assert "example.com" in r.text


def test_shutdown_flushes_once(running_server):
    shell, thread = running_server
    assert shell.trigger_shutdown(signal.SIGTERM)
    assert not shell.trigger_shutdown(signal.SIGINT)
    thread.join(timeout=10)
    assert not thread.is_alive()
    assert shell.telemetry.flushes == 1


def test_shutdown_survives_flush_failure(running_server):
    shell, thread = running_server
    shell.telemetry.fail = True
    shell.trigger_shutdown(signal.SIGABRT)
    thread.join(timeout=10)
    assert not thread.is_alive()
    assert shell.telemetry.flushes == 1


def test_shutdown_trigger_fires_once():
    trigger = ShutdownTrigger()
    assert not trigger.fired
    assert trigger.fire(signal.SIGINT)
    assert not trigger.fire(signal.SIGTERM)
    assert trigger.fired
    assert trigger.wait(timeout=0) == signal.SIGINT


def test_signal_name():
    assert signal_name(signal.SIGTERM) == "SIGTERM"
    assert signal_name(9999) == "9999"


def test_uncommon_method_on_unknown_path(client):
    r = client.open("/nope", method="PROPFIND")
    assert r.status_code == 404
    assert r.get_data(as_text=True) == "404 page not found"


def test_bind_failure_keeps_process_alive(telemetry):
    #the error must come back as StartError, never as SystemExit from the server library
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        shell = ServerShell("certinator-test", telemetry, taken.getsockname()[1], host="127.0.0.1")
        try:
            shell.start(handle_signals=False)
        except StartError as e:
            assert "could not listen on 127.0.0.1" in str(e)
        else:
            pytest.fail("start() returned on a port in use")


def test_unknown_host_is_start_error(telemetry, free_port):
    shell = ServerShell("certinator-test", telemetry, free_port, host="256.256.256.256")
    with pytest.raises(StartError):
        shell.start(handle_signals=False)
