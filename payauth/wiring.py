from __future__ import annotations

import logging

from opentelemetry.trace import Tracer

from .context import CallContext
from .endpoints import make_endpoints
from .instrument import ASGIApp, Instrument, Metrics, merge
from .logs import new_logger
from .service import AuthorisationService, Service, chain, logging_middleware
from .transport import make_http_handler


def wire_up(
    ctx: CallContext,
    decline_amount: float,
    tracer: Tracer,
    service_name: str,
    *,
    metrics: Metrics | None = None,
    request_timeout_sec: float = 0.0,
    logger: logging.Logger | None = None,
) -> tuple[ASGIApp, logging.Logger]:
    """Compose the authorisation pipeline into one ASGI handler.

    ``metrics`` should be created once per process and passed to every call;
    when omitted the handler records into a private registry.
    """
    if logger is None:
        logger = new_logger("payauth")
    if metrics is None:
        metrics = Metrics.create()

    service: Service = chain(
        AuthorisationService(decline_amount),
        logging_middleware(logger),
    )

    endpoints = make_endpoints(service, tracer)

    router = make_http_handler(
        ctx,
        endpoints,
        logger,
        tracer,
        service_name=service_name,
        registry=metrics.registry,
        request_timeout_sec=request_timeout_sec,
    )

    http_middleware = [
        Instrument(metrics, route_matcher=router),
    ]

    handler = merge(*http_middleware).wrap(router)

    return handler, logger
