from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable

import uvicorn
from opentelemetry import trace
from pydantic import ValidationError

from .config import ServiceConfig, from_env, load_config, parse_config
from .context import background
from .endpoints import make_endpoints
from .instrument import Metrics
from .logs import log_kv, new_logger
from .service import AuthorisationService
from .tracing import build_tracer
from .transport import make_http_handler
from .wiring import wire_up


def _resolve_config(args: argparse.Namespace) -> ServiceConfig:
    config = from_env()
    if args.config:
        loaded = load_config(args.config)
        if not isinstance(loaded, dict):
            raise ValueError("Config file must contain a mapping at the top level")
        merged = config.model_dump()
        merged.update(loaded)
        config = parse_config(merged)
    overrides = {
        key: value
        for key, value in (
            ("host", args.host),
            ("port", args.port),
            ("decline_amount", args.decline_amount),
        )
        if value is not None
    }
    if overrides:
        config = parse_config({**config.model_dump(), **overrides})
    return config


def _run_serve(args: argparse.Namespace) -> int:
    try:
        config = _resolve_config(args)
    except (ValidationError, ValueError, OSError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    logger = new_logger("payauth", level=config.log_level)
    ctx, cancel = background().with_cancel()
    handler, logger = wire_up(
        ctx,
        config.decline_amount,
        build_tracer(config),
        config.service_name,
        metrics=Metrics.create(),
        request_timeout_sec=config.request_timeout_sec,
        logger=logger,
    )
    log_kv(
        logger,
        logging.INFO,
        "starting",
        service=config.service_name,
        host=config.host,
        port=config.port,
        decline_amount=config.decline_amount,
    )
    try:
        uvicorn.run(handler, host=config.host, port=config.port, log_level=config.log_level)
    finally:
        cancel()
        log_kv(logger, logging.INFO, "stopped", service=config.service_name)
    return 0


def _run_routes() -> int:
    service = AuthorisationService(ServiceConfig().decline_amount)
    tracer = trace.NoOpTracer()
    router = make_http_handler(
        background(),
        make_endpoints(service, tracer),
        new_logger("payauth"),
        tracer,
        registry=Metrics.create().registry,
    )
    for route in router.routes():
        print(f"{','.join(route.methods):<8} {route.path:<16} {route.name}")
    return 0


def _run_validate(path: str) -> int:
    try:
        config = parse_config(load_config(path))
    except ValidationError as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return 2
    except (ValueError, OSError) as exc:
        print(f"Unable to read config: {exc}", file=sys.stderr)
        return 2
    print(f"OK: decline_amount={config.decline_amount:.2f} service_name={config.service_name}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="payauth", description="Payment authorisation service")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--config", default=None, help="Path to config file (.json/.yaml)")
    serve.add_argument("--host", default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve.add_argument("--decline-amount", type=float, default=None, help="Decline payments at or above this amount")

    sub.add_parser("routes", help="Print the HTTP route table")

    validate = sub.add_parser("validate", help="Validate a config file")
    validate.add_argument("path", help="Path to config file (.json/.yaml)")

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "serve":
        return _run_serve(args)
    if args.command == "routes":
        return _run_routes()
    if args.command == "validate":
        return _run_validate(args.path)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
