from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import logging
import math
import numbers
import time
from typing import Any, Callable, Mapping, Protocol

from .context import CallContext
from .errors import InvalidRequest, is_user_error
from .logs import log_kv


class Decision(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"


@dataclass(frozen=True)
class AuthorisationRequest:
    amount: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorisationResponse:
    decision: Decision
    message: str = ""

    @property
    def authorised(self) -> bool:
        return self.decision is Decision.APPROVED

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "authorised": self.authorised,
            "message": self.message,
        }


class Service(Protocol):
    def authorise(self, ctx: CallContext, request: AuthorisationRequest) -> AuthorisationResponse:
        ...


Middleware = Callable[[Service], Service]


class AuthorisationService:
    """Approve or decline a transaction against a fixed decline threshold.

    Amounts at or above the threshold are declined; anything below it is
    approved. The threshold is set once and never changes.
    """

    def __init__(self, decline_amount: float) -> None:
        decline_amount = float(decline_amount)
        if not math.isfinite(decline_amount) or decline_amount < 0.0:
            raise ValueError("decline_amount must be a finite, non-negative number")
        self._decline_amount = decline_amount

    @property
    def decline_amount(self) -> float:
        return self._decline_amount

    def authorise(self, ctx: CallContext, request: AuthorisationRequest) -> AuthorisationResponse:
        amount = request.amount
        if isinstance(amount, bool) or not isinstance(amount, (numbers.Real, Decimal)):
            raise InvalidRequest("invalid payment amount: not a number")
        if not math.isfinite(amount):
            raise InvalidRequest("invalid payment amount: not finite")
        if amount < 0:
            raise InvalidRequest("invalid payment amount: negative")
        if amount >= self._decline_amount:
            return AuthorisationResponse(
                decision=Decision.DECLINED,
                message=f"Payment declined: amount exceeds {self._decline_amount:.2f}",
            )
        return AuthorisationResponse(decision=Decision.APPROVED, message="Payment authorised")


class LoggingService:
    """Emit one structured log entry around every call to ``inner``."""

    def __init__(self, inner: Service, logger: logging.Logger) -> None:
        self._inner = inner
        self._logger = logger

    def authorise(self, ctx: CallContext, request: AuthorisationRequest) -> AuthorisationResponse:
        start = time.perf_counter()
        try:
            response = self._inner.authorise(ctx, request)
        except Exception as exc:
            took = time.perf_counter() - start
            if is_user_error(exc):
                log_kv(
                    self._logger,
                    logging.WARNING,
                    "authorise failed",
                    method="Authorise",
                    amount=request.amount,
                    err=str(exc),
                    kind=getattr(exc, "kind", None),
                    took=f"{took:.6f}s",
                )
            else:
                log_kv(
                    self._logger,
                    logging.ERROR,
                    "authorise failed",
                    exc_info=exc,
                    method="Authorise",
                    amount=request.amount,
                    metadata=dict(request.metadata),
                    err=str(exc),
                    kind=getattr(exc, "kind", exc.__class__.__name__),
                    took=f"{took:.6f}s",
                )
            raise
        log_kv(
            self._logger,
            logging.INFO,
            "authorise",
            method="Authorise",
            amount=request.amount,
            decision=response.decision.value,
            took=f"{time.perf_counter() - start:.6f}s",
        )
        return response


def logging_middleware(logger: logging.Logger) -> Middleware:
    def middleware(inner: Service) -> Service:
        return LoggingService(inner, logger)

    return middleware


def chain(service: Service, *middlewares: Middleware) -> Service:
    """Wrap ``service`` so that the first middleware listed is the outermost."""
    for middleware in reversed(middlewares):
        service = middleware(service)
    return service
