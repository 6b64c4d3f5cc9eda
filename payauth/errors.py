from __future__ import annotations


class AuthorisationError(Exception):
    """Base class for errors raised along the authorisation path."""

    kind = "error"
    status_code = 500


class InvalidRequest(AuthorisationError, ValueError):
    """Raised when a request carries an unusable amount."""

    kind = "invalid_request"
    status_code = 400


class DecodeError(AuthorisationError, ValueError):
    """Raised when a transport body cannot be turned into a domain request."""

    kind = "decode_error"
    status_code = 400


class BadRequest(DecodeError):
    """Raised when an endpoint receives a request envelope of the wrong type."""

    kind = "bad_request"


class InternalError(AuthorisationError):
    kind = "internal_error"
    status_code = 500


class Cancelled(AuthorisationError):
    kind = "cancelled"
    status_code = 503


class DeadlineExceeded(AuthorisationError):
    kind = "deadline_exceeded"
    status_code = 504


def is_user_error(exc: BaseException) -> bool:
    return isinstance(exc, AuthorisationError) and exc.status_code < 500


def as_internal(exc: BaseException) -> AuthorisationError:
    if isinstance(exc, AuthorisationError):
        return exc
    wrapped = InternalError(f"{exc.__class__.__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped
