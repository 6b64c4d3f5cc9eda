from __future__ import annotations

import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from payauth.context import background
from payauth.errors import InvalidRequest
from payauth.logs import new_logger
from payauth.service import AuthorisationRequest, AuthorisationService, chain, logging_middleware


def main() -> None:
    logger = new_logger("payauth.example")
    service = chain(AuthorisationService(100.0), logging_middleware(logger))
    ctx = background()

    for amount in (50.0, 100.0, 150.0, -5.0):
        try:
            response = service.authorise(ctx, AuthorisationRequest(amount=amount))
        except InvalidRequest as exc:
            print(f"{amount:>8.2f} -> rejected: {exc}")
            continue
        print(f"{amount:>8.2f} -> {response.decision.value}: {response.message}")


if __name__ == "__main__":
    main()
