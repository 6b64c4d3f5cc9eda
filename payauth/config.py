from __future__ import annotations

import json
import logging
import math
import os
from typing import Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

_LOGGER = logging.getLogger("payauth.config")
_ENV_PREFIX = "PAYAUTH_"


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    decline_amount: float = 105.0
    service_name: str = "payment"
    host: str = "0.0.0.0"
    port: int = Field(8080, ge=1, le=65535)
    request_timeout_sec: float = Field(0.0, ge=0.0)
    log_level: Literal["debug", "info", "warning", "error"] = "info"
    otel_enabled: bool = False
    otel_endpoint: str = "http://localhost:4318/v1/traces"
    otel_sample_ratio: float = Field(1.0, ge=0.0, le=1.0)
    otel_headers: str = ""

    @field_validator("decline_amount")
    @classmethod
    def _decline_amount_valid(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0.0:
            raise ValueError("decline_amount must be a finite, non-negative number")
        return value

    @field_validator("service_name")
    @classmethod
    def _service_name_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("service_name must be non-empty")
        return value


def _read_non_negative_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        _LOGGER.warning("Invalid %s=%r; using %d", name, raw, default)
        return default
    return max(0, value)


def _read_non_negative_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        _LOGGER.warning("Invalid %s=%r; using %.2f", name, raw, default)
        return default
    if not math.isfinite(value):
        _LOGGER.warning("Invalid %s=%r; using %.2f", name, raw, default)
        return default
    return max(0.0, value)


def _read_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    _LOGGER.warning("Invalid %s=%r; using %s", name, raw, default)
    return default


def from_env(environ: Mapping[str, str] | None = None) -> ServiceConfig:
    """Build a config from ``PAYAUTH_*`` variables, keeping defaults for bad values."""
    if environ is None:
        environ = os.environ
    defaults = ServiceConfig()
    log_level = environ.get(f"{_ENV_PREFIX}LOG_LEVEL", defaults.log_level).strip().lower()
    if log_level not in {"debug", "info", "warning", "error"}:
        _LOGGER.warning("Invalid %sLOG_LEVEL=%r; using %s", _ENV_PREFIX, log_level, defaults.log_level)
        log_level = defaults.log_level
    port = _read_non_negative_int(environ, f"{_ENV_PREFIX}PORT", defaults.port)
    if not 1 <= port <= 65535:
        _LOGGER.warning("Invalid %sPORT=%r; using %d", _ENV_PREFIX, port, defaults.port)
        port = defaults.port
    return ServiceConfig(
        decline_amount=_read_non_negative_float(environ, f"{_ENV_PREFIX}DECLINE_AMOUNT", defaults.decline_amount),
        service_name=environ.get(f"{_ENV_PREFIX}SERVICE_NAME") or defaults.service_name,
        host=environ.get(f"{_ENV_PREFIX}HOST") or defaults.host,
        port=port,
        request_timeout_sec=_read_non_negative_float(
            environ, f"{_ENV_PREFIX}REQUEST_TIMEOUT_SEC", defaults.request_timeout_sec
        ),
        log_level=log_level,
        otel_enabled=_read_bool(environ, f"{_ENV_PREFIX}OTEL_ENABLED", defaults.otel_enabled),
        otel_endpoint=environ.get(f"{_ENV_PREFIX}OTEL_ENDPOINT") or defaults.otel_endpoint,
        otel_sample_ratio=min(
            1.0,
            _read_non_negative_float(environ, f"{_ENV_PREFIX}OTEL_SAMPLE_RATIO", defaults.otel_sample_ratio),
        ),
        otel_headers=environ.get(f"{_ENV_PREFIX}OTEL_HEADERS", defaults.otel_headers),
    )


def load_config(path: str) -> dict:
    if path.endswith(".json"):
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    if path.endswith(".yaml") or path.endswith(".yml"):
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    raise ValueError("Config file must be .json or .yaml")


def parse_config(data: Mapping[str, object]) -> ServiceConfig:
    return ServiceConfig.model_validate(data)
