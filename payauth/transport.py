from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
import json
import logging
import math
from typing import Any, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from opentelemetry import propagate, trace
from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.routing import Match

from .context import CallContext
from .endpoints import AuthoriseRequest, AuthoriseResponse, Endpoints
from .errors import DecodeError, as_internal
from .instrument import Scope, make_label_value
from .logs import log_kv

AUTHORISE_PATH = "/paymentAuth"
HEALTH_PATH = "/health"
METRICS_PATH = "/metrics"
_INTERNAL_ERROR_MESSAGE = "internal server error"


class AuthoriseBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: Union[StrictInt, StrictFloat]


@dataclass(frozen=True)
class RouteInfo:
    methods: tuple[str, ...]
    path: str
    name: str


def _as_amount(value: int | float) -> float:
    try:
        return float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf


def decode_authorise_request(body: bytes) -> AuthoriseRequest:
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError) as exc:
        raise DecodeError("request body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise DecodeError("request body must be a JSON object")
    try:
        parsed = AuthoriseBody.model_validate(payload)
    except ValidationError as exc:
        raise DecodeError("request body must carry a numeric amount") from exc
    return AuthoriseRequest(amount=_as_amount(parsed.amount), metadata=dict(parsed.model_extra or {}))


def encode_error(exc: BaseException) -> JSONResponse:
    err = as_internal(exc)
    status_code = err.status_code
    message = _INTERNAL_ERROR_MESSAGE if status_code == 500 else str(err)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "kind": err.kind,
            "status_code": status_code,
            "status_text": HTTPStatus(status_code).phrase,
        },
    )


def encode_response(response: Any) -> JSONResponse:
    if not isinstance(response, AuthoriseResponse):
        raise TypeError(f"unexpected response type {type(response).__name__}")
    failed = response.failed()
    if failed is not None:
        return encode_error(failed)
    return JSONResponse(status_code=200, content=response.authorisation.to_dict())


class Router:
    """The FastAPI application plus read-only access to its route table."""

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        await self.app(scope, receive, send)

    def routes(self) -> list[RouteInfo]:
        table = []
        for route in self.app.router.routes:
            methods = getattr(route, "methods", None)
            if not methods:
                continue
            table.append(RouteInfo(methods=tuple(sorted(methods)), path=route.path, name=route.name))
        return table

    def match_route(self, scope: Scope) -> str | None:
        for route in self.app.router.routes:
            match, _ = route.matches(scope)
            if match == Match.FULL:
                return make_label_value(route.path)
        return None


def _request_context(parent: CallContext, request: Request, request_timeout_sec: float) -> CallContext:
    ctx = parent
    if request_timeout_sec > 0.0:
        ctx = ctx.with_timeout(request_timeout_sec)
    return ctx.with_trace(propagate.extract(request.headers, context=parent.trace))


def _log_transport_error(logger: logging.Logger, request: Request, exc: BaseException) -> None:
    err = as_internal(exc)
    if err.status_code >= 500:
        log_kv(
            logger,
            logging.ERROR,
            "transport error",
            exc_info=exc,
            method=request.method,
            path=request.url.path,
            kind=err.kind,
            err=str(exc),
        )
    else:
        log_kv(
            logger,
            logging.WARNING,
            "transport error",
            method=request.method,
            path=request.url.path,
            kind=err.kind,
            err=str(exc),
        )


def make_http_handler(
    ctx: CallContext,
    endpoints: Endpoints,
    logger: logging.Logger,
    tracer: Tracer,
    *,
    service_name: str = "payment",
    registry: CollectorRegistry | None = None,
    request_timeout_sec: float = 0.0,
) -> Router:
    app = FastAPI(title="payauth", version="1.0", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post(AUTHORISE_PATH, name="paymentAuth")
    async def payment_auth(request: Request) -> Response:
        call_ctx = _request_context(ctx, request, request_timeout_sec)
        span = tracer.start_span(f"POST {AUTHORISE_PATH}", context=call_ctx.trace, kind=SpanKind.SERVER)
        span.set_attribute("http.method", request.method)
        span.set_attribute("http.route", AUTHORISE_PATH)
        call_ctx = call_ctx.with_trace(trace.set_span_in_context(span, call_ctx.trace))
        try:
            try:
                call_ctx.raise_if_done()
                body = await request.body()
                envelope = decode_authorise_request(body)
                call_ctx.raise_if_done()
                response = encode_response(await run_in_threadpool(endpoints.authorise, call_ctx, envelope))
            except Exception as exc:
                _log_transport_error(logger, request, exc)
                response = encode_error(exc)
            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(Status(StatusCode.ERROR))
            return response
        finally:
            span.end()

    @app.get(HEALTH_PATH, name="health")
    def health() -> dict:
        return {
            "health": [
                {
                    "service": service_name,
                    "status": "OK",
                    "time": datetime.now(timezone.utc).isoformat(),
                }
            ]
        }

    if registry is not None:

        @app.get(METRICS_PATH, name="metrics")
        def prometheus_metrics() -> Response:
            return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return Router(app)
