from __future__ import annotations

from dataclasses import dataclass
import re
import time
from typing import Any, Awaitable, Callable, MutableMapping, Protocol

from prometheus_client import CollectorRegistry, Gauge, Histogram

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9]+")
UNMATCHED_ROUTE = "other"


def exponential_buckets(start: float, factor: float, count: int) -> tuple[float, ...]:
    if count < 1:
        raise ValueError("count must be positive")
    if start <= 0:
        raise ValueError("start must be positive")
    if factor <= 1:
        raise ValueError("factor must be greater than 1")
    return tuple(start * factor ** i for i in range(count))


def make_label_value(path: str) -> str:
    """Turn a route template such as ``/paymentAuth`` into a metric label."""
    value = _INVALID_LABEL_CHARS.sub("_", path).strip("_").lower()
    return value or "root"


@dataclass(frozen=True)
class Metrics:
    """The HTTP collectors, registered once on an explicit registry."""

    registry: CollectorRegistry
    duration: Histogram
    inflight: Gauge
    request_size: Histogram
    response_size: Histogram

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> "Metrics":
        if registry is None:
            registry = CollectorRegistry()
        size_buckets = exponential_buckets(100, 10, 6)
        return cls(
            registry=registry,
            duration=Histogram(
                "http_request_duration_seconds",
                "Time (in seconds) spent serving HTTP requests.",
                ["method", "path", "status_code", "is_websocket"],
                registry=registry,
                buckets=Histogram.DEFAULT_BUCKETS,
            ),
            inflight=Gauge(
                "http_request_active",
                "The number of HTTP requests currently being handled.",
                ["method", "path"],
                registry=registry,
            ),
            request_size=Histogram(
                "http_request_size_bytes",
                "Size of HTTP request bodies in bytes.",
                ["method", "handler"],
                registry=registry,
                buckets=size_buckets,
            ),
            response_size=Histogram(
                "http_response_size_bytes",
                "Size of HTTP response bodies in bytes.",
                ["method", "handler"],
                registry=registry,
                buckets=size_buckets,
            ),
        )


class RouteMatcher(Protocol):
    def match_route(self, scope: Scope) -> str | None:
        ...


class Interface(Protocol):
    def wrap(self, app: ASGIApp) -> ASGIApp:
        ...


def is_websocket(scope: Scope) -> bool:
    if scope.get("type") == "websocket":
        return True
    headers = {
        key.decode("latin-1").lower(): value.decode("latin-1").lower()
        for key, value in scope.get("headers", [])
    }
    return headers.get("upgrade") == "websocket" and "upgrade" in headers.get("connection", "")


class Instrument:
    """Observe every HTTP call made through the wrapped application.

    The path label is the matched route template, or ``"other"`` when nothing
    matched, so raw URLs never reach the metric labels.
    """

    def __init__(self, metrics: Metrics, route_matcher: RouteMatcher) -> None:
        self.metrics = metrics
        self.route_matcher = route_matcher

    def route_label(self, scope: Scope) -> str:
        return self.route_matcher.match_route(scope) or UNMATCHED_ROUTE

    def wrap(self, app: ASGIApp) -> ASGIApp:
        return _InstrumentedApp(self, app)


class _InstrumentedApp:
    def __init__(self, instrument: Instrument, app: ASGIApp) -> None:
        self._instrument = instrument
        self._app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self._app(scope, receive, send)
            return

        metrics = self._instrument.metrics
        method = scope.get("method", "GET")
        route = self._instrument.route_label(scope)
        ws_label = "true" if is_websocket(scope) else "false"
        state: dict[str, Any] = {"status": None, "request_bytes": 0, "response_bytes": 0}

        async def counting_receive() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                state["request_bytes"] += len(message.get("body", b""))
            return message

        async def capturing_send(message: Message) -> None:
            kind = message["type"]
            if kind == "http.response.start":
                state["status"] = message["status"]
            elif kind == "http.response.body":
                state["response_bytes"] += len(message.get("body", b""))
            elif kind == "websocket.accept":
                state["status"] = 101
            elif kind == "websocket.close" and state["status"] is None:
                state["status"] = 403
            await send(message)

        inflight = metrics.inflight.labels(method=method, path=route)
        inflight.inc()
        start = time.perf_counter()
        try:
            await self._app(scope, counting_receive, capturing_send)
        finally:
            elapsed = time.perf_counter() - start
            status = state["status"] if state["status"] is not None else 500
            metrics.duration.labels(
                method=method,
                path=route,
                status_code=str(status),
                is_websocket=ws_label,
            ).observe(elapsed)
            metrics.request_size.labels(method=method, handler=route).observe(state["request_bytes"])
            metrics.response_size.labels(method=method, handler=route).observe(state["response_bytes"])
            inflight.dec()


class _Merged:
    def __init__(self, middlewares: tuple[Interface, ...]) -> None:
        self._middlewares = middlewares

    def wrap(self, app: ASGIApp) -> ASGIApp:
        for middleware in reversed(self._middlewares):
            app = middleware.wrap(app)
        return app


def merge(*middlewares: Interface) -> Interface:
    """Compose middlewares into one; the first listed runs outermost."""
    return _Merged(middlewares)
