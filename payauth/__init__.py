"""Payment authorisation service."""

from .context import CallContext, background
from .errors import (
    AuthorisationError,
    BadRequest,
    Cancelled,
    DeadlineExceeded,
    DecodeError,
    InternalError,
    InvalidRequest,
)
from .service import (
    AuthorisationRequest,
    AuthorisationResponse,
    AuthorisationService,
    Decision,
    Service,
    chain,
    logging_middleware,
)
from .wiring import wire_up

__all__ = [
    "AuthorisationError",
    "AuthorisationRequest",
    "AuthorisationResponse",
    "AuthorisationService",
    "BadRequest",
    "CallContext",
    "Cancelled",
    "DeadlineExceeded",
    "Decision",
    "DecodeError",
    "InternalError",
    "InvalidRequest",
    "Service",
    "background",
    "chain",
    "logging_middleware",
    "wire_up",
]
