"""
Instrumented HTTP server shell.

Owns the listener, the route table and the process lifecycle: handlers are
registered (and wrapped with tracing/metrics) before the server starts, the
route table is then frozen, and a termination signal runs the shutdown
sequence exactly once on a dedicated watcher thread.
"""
import logging
import signal
import socket
import threading
import time
from types import MappingProxyType

import flask
from flask import request
from werkzeug.exceptions import MethodNotAllowed
from werkzeug.serving import make_server

from certinator.config import DEFAULT_SHUTDOWN_GRACE, validate_port
from certinator.errors import StartError
from certinator.handlers import plain_error
from certinator.instrumentation import instrument

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGABRT)

#methods routed to the dispatcher, any other one reaches it through the 405 handler
METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "CONNECT", "TRACE"]


class ShutdownTrigger():
    """One shot shutdown channel: many producers may fire it, one consumer waits on it."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._signum = None

    def fire(self, signum):
        """
        Returns:
            bool: True for the call that actually fired the trigger
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._signum = signum
            self._event.set()
            return True

    @property
    def fired(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        self._event.wait(timeout)
        return self._signum


def signal_name(signum):
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class ServerShell():
    def __init__(self, service_name, telemetry, port, shutdown_grace=DEFAULT_SHUTDOWN_GRACE, host="0.0.0.0"):
        self.service_name = service_name
        self.telemetry = telemetry
        self.port = validate_port(port)
        self.host = host
        self.shutdown_grace = shutdown_grace
        self.shutdown_trigger = ShutdownTrigger()
        self._routes = {}
        self._frozen_routes = None
        self._app = None
        self._httpd = None
        self._watcher = None
        #scrape endpoint goes in unwrapped
        self._routes["/metrics"] = telemetry.metrics.handler

    @property
    def routes(self):
        if self._frozen_routes is not None:
            return self._frozen_routes
        return MappingProxyType(self._routes)

    def register_handler(self, path, handler):
        """
        Add handler under path, wrapped with tracing and metrics.
        Registering the same path twice keeps the last handler.
        """
        if self._frozen_routes is not None:
            raise RuntimeError("cannot register %s: routes are frozen once the server is built" % path)
        if path in self._routes:
            logger.info("overwriting handler for route %s", path)
        self._routes[path] = instrument(path, handler, self.telemetry.tracer, self.telemetry.metrics)

    def build_app(self):
        """
        Freeze the route table and build the WSGI application dispatching on it.
        Returns:
            flask.Flask
        """
        if self._app is not None:
            return self._app
        self._frozen_routes = MappingProxyType(dict(self._routes))
        app = flask.Flask(__name__)
        app.add_url_rule("/", "dispatch", self._dispatch, methods=METHODS, provide_automatic_options=False)
        app.add_url_rule("/<path:path>", "dispatch", self._dispatch, methods=METHODS,
                         provide_automatic_options=False)
        app.register_error_handler(MethodNotAllowed, self._dispatch_other_method)
        self._app = app
        return app

    def _dispatch_other_method(self, error):
        #methods outside METHODS are refused by the url map, the handlers decide instead
        return self._dispatch()

    def _dispatch(self, path=None):
        handler = self._frozen_routes.get(request.path)
        if handler is None:
            return plain_error("404 page not found", 404)
        return handler(request)

    def start(self, handle_signals=True):
        """
        Bind the listener and serve until the shutdown sequence stops the loop.
        Raises:
            StartError: if the listener cannot be bound
        """
        app = self.build_app()
        sock = self._listen()
        try:
            self._httpd = make_server(self.host, self.port, app, threaded=True, fd=sock.fileno())
        finally:
            #the server works on its own duplicate of the descriptor
            sock.close()

        if handle_signals:
            self._install_signal_handlers()
        self._watcher = threading.Thread(target=self._await_shutdown, name="shutdown-watcher", daemon=True)
        self._watcher.start()

        logger.info("Initializing http server on port %d", self.port)
        try:
            self._httpd.serve_forever()
        finally:
            self._httpd.server_close()

    def _listen(self):
        """
        Bind and listen on host:port
        Returns:
            socket.socket: the listening socket
        Raises:
            StartError: port in use, permission denied or unknown host
        """
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(socket.SOMAXCONN)
        except OSError as e:
            sock.close()
            raise StartError(f"could not listen on {self.host}:{self.port}: {e}") from e
        return sock

    def trigger_shutdown(self, signum=signal.SIGTERM):
        return self.shutdown_trigger.fire(signum)

    def _install_signal_handlers(self):
        for signum in SHUTDOWN_SIGNALS:
            signal.signal(signum, self._on_signal)

    def _on_signal(self, signum, frame):
        self.trigger_shutdown(signum)

    def _await_shutdown(self):
        signum = self.shutdown_trigger.wait()
        self._shutdown(signum)

    def _shutdown(self, signum):
        logger.info("caught signal %s", signal_name(signum))
        logger.info("wait for %s second(s) to finish processing", self.shutdown_grace)
        time.sleep(self.shutdown_grace)
        logger.info("os term signal captured shutting down http server...")
        try:
            self.telemetry.flush()
        except Exception:
            logger.exception("could not flush telemetry")
        logger.info("finished server cleanup")
        self._httpd.shutdown()
