from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer

from .context import CallContext
from .errors import AuthorisationError, BadRequest, as_internal, is_user_error
from .service import AuthorisationRequest, AuthorisationResponse, Service

Endpoint = Callable[[CallContext, Any], Any]
EndpointMiddleware = Callable[[Endpoint], Endpoint]

AUTHORISE = "authorise"


@dataclass(frozen=True)
class AuthoriseRequest:
    amount: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthoriseResponse:
    authorisation: AuthorisationResponse | None = None
    err: AuthorisationError | None = None

    def failed(self) -> AuthorisationError | None:
        return self.err


def make_authorise_endpoint(service: Service) -> Endpoint:
    def authorise_endpoint(ctx: CallContext, request: Any) -> AuthoriseResponse:
        if not isinstance(request, AuthoriseRequest):
            raise BadRequest(f"unexpected request type {type(request).__name__}")
        domain_request = AuthorisationRequest(amount=request.amount, metadata=request.metadata)
        try:
            authorisation = service.authorise(ctx, domain_request)
        except Exception as exc:
            if is_user_error(exc):
                return AuthoriseResponse(err=exc)
            raise as_internal(exc) from exc
        return AuthoriseResponse(authorisation=authorisation)

    return authorise_endpoint


def trace_endpoint(tracer: Tracer, operation: str) -> EndpointMiddleware:
    """Run an endpoint inside a span named ``operation``.

    The span is a child of the tracing context carried by the call context and
    the inner endpoint receives a context pointing at the new span.
    """

    def middleware(endpoint: Endpoint) -> Endpoint:
        def traced(ctx: CallContext, request: Any) -> Any:
            span = tracer.start_span(operation, context=ctx.trace, kind=SpanKind.INTERNAL)
            span.set_attribute("operation", operation)
            try:
                response = endpoint(ctx.with_trace(trace.set_span_in_context(span, ctx.trace)), request)
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
            else:
                err = getattr(response, "err", None)
                if err is not None:
                    span.set_attribute("error.kind", getattr(err, "kind", type(err).__name__))
                    span.set_status(Status(StatusCode.ERROR, str(err)))
                return response
            finally:
                span.end()

        return traced

    return middleware


@dataclass(frozen=True)
class Endpoints:
    authorise: Endpoint

    def by_name(self) -> dict[str, Endpoint]:
        return {AUTHORISE: self.authorise}


def make_endpoints(service: Service, tracer: Tracer) -> Endpoints:
    return Endpoints(
        authorise=trace_endpoint(tracer, AUTHORISE)(make_authorise_endpoint(service)),
    )
