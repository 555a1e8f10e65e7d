"""
Observability wrapper for request handlers.

A handler is any callable taking the request and returning a response. The
wrapper records a span and request metrics around each call and never touches
the response or the exception coming out of the handler.
"""
import functools
import logging
import time

from opentelemetry.trace import SpanKind, Status, StatusCode

logger = logging.getLogger(__name__)


def instrument(path, handler, tracer, metrics):
    """
    Wrap handler so that every call is traced and counted under the name path
    Returns:
        the wrapped handler
    """
    @functools.wraps(handler)
    def wrapped(request):
        started = time.perf_counter()
        span = _start_span(tracer, path, request)
        status_code = 500
        try:
            response = handler(request)
            status_code = response.status_code
            return response
        except Exception as e:
            _record_error(span, metrics, path, e)
            raise
        finally:
            _finish(span, metrics, path, request.method, status_code, time.perf_counter() - started)

    return wrapped


def _start_span(tracer, path, request):
    try:
        return tracer.start_span(
            path,
            kind=SpanKind.SERVER,
            attributes={
                "http.method": request.method,
                "http.route": path,
                "http.target": request.full_path.rstrip("?"),
            },
        )
    except Exception:
        logger.warning("could not start span for %s", path, exc_info=True)
        return None


def _record_error(span, metrics, path, error):
    try:
        metrics.errors.labels(route=path, error_type=type(error).__name__).inc()
        if span is not None:
            span.record_exception(error)
    except Exception:
        logger.warning("could not record error for %s", path, exc_info=True)


def _finish(span, metrics, path, method, status_code, elapsed):
    try:
        metrics.requests.labels(route=path, method=method, status_code=str(status_code)).inc()
        metrics.latency.labels(route=path, method=method).observe(elapsed)
    except Exception:
        logger.warning("could not record metrics for %s", path, exc_info=True)
    if span is None:
        return
    try:
        span.set_attribute("http.status_code", status_code)
        if status_code >= 500:
            span.set_status(Status(StatusCode.ERROR))
        span.end()
    except Exception:
        logger.warning("could not end span for %s", path, exc_info=True)
