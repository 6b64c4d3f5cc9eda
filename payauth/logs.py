from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any, TextIO


class KeyValueFormatter(logging.Formatter):
    """Render a record as one JSON line of key-value pairs.

    Every entry carries ``ts`` (UTC), ``level``, ``caller`` and ``msg``; extra
    pairs are taken from the ``kv`` attribute set through ``extra={"kv": ...}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "caller": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        kv = getattr(record, "kv", None)
        if kv:
            payload.update(kv)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def new_logger(
    name: str = "payauth",
    stream: TextIO | None = None,
    level: int | str = logging.INFO,
) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(getattr(h, "_payauth_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.setFormatter(KeyValueFormatter())
        handler._payauth_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = False
    return logger


def log_kv(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    exc_info: BaseException | None = None,
    **fields: Any,
) -> None:
    logger.log(level, event, extra={"kv": fields}, exc_info=exc_info, stacklevel=2)
