from decimal import Decimal
import math

import pytest

from payauth.context import background
from payauth.errors import InvalidRequest
from payauth.service import (
    AuthorisationRequest,
    AuthorisationResponse,
    AuthorisationService,
    Decision,
    chain,
)


def _authorise(amount, threshold=100.0):
    service = AuthorisationService(threshold)
    return service.authorise(background(), AuthorisationRequest(amount=amount))


def test_amount_below_threshold_is_approved():
    response = _authorise(50.0)
    assert response.decision is Decision.APPROVED
    assert response.authorised is True
    assert response.message == "Payment authorised"


def test_amount_above_threshold_is_declined():
    response = _authorise(150.0)
    assert response.decision is Decision.DECLINED
    assert response.authorised is False
    assert response.message == "Payment declined: amount exceeds 100.00"


def test_amount_at_threshold_is_declined():
    assert _authorise(100.0).decision is Decision.DECLINED


def test_boundary_neighbours():
    below = math.nextafter(100.0, 0.0)
    above = math.nextafter(100.0, math.inf)
    assert _authorise(below).decision is Decision.APPROVED
    assert _authorise(above).decision is Decision.DECLINED
    assert _authorise(99.99).decision is Decision.APPROVED


def test_zero_amount_is_approved():
    assert _authorise(0.0).decision is Decision.APPROVED
    assert _authorise(0).decision is Decision.APPROVED


def test_zero_threshold_declines_everything():
    assert _authorise(0.0, threshold=0.0).decision is Decision.DECLINED


def test_decimal_amounts_are_supported():
    assert _authorise(Decimal("99.99")).decision is Decision.APPROVED
    assert _authorise(Decimal("100")).decision is Decision.DECLINED


def test_decision_is_deterministic():
    service = AuthorisationService(100.0)
    ctx = background()
    for amount in (0.0, 12.5, 99.0, 100.0, 1e9):
        first = service.authorise(ctx, AuthorisationRequest(amount=amount))
        for _ in range(5):
            assert service.authorise(ctx, AuthorisationRequest(amount=amount)) == first


@pytest.mark.parametrize(
    "amount",
    [-5, -0.01, float("nan"), float("inf"), float("-inf"), "10", None, True],
)
def test_invalid_amounts_raise(amount):
    with pytest.raises(InvalidRequest):
        _authorise(amount)


@pytest.mark.parametrize("threshold", [-1.0, float("nan"), float("inf")])
def test_threshold_must_be_finite_and_non_negative(threshold):
    with pytest.raises(ValueError):
        AuthorisationService(threshold)


def test_threshold_is_read_only():
    service = AuthorisationService(42)
    assert service.decline_amount == 42.0
    with pytest.raises(AttributeError):
        service.decline_amount = 1.0


def test_response_to_dict():
    response = AuthorisationResponse(decision=Decision.DECLINED, message="no")
    assert response.to_dict() == {"decision": "declined", "authorised": False, "message": "no"}


def test_chain_applies_first_middleware_outermost():
    calls = []

    def tagging(tag):
        def middleware(inner):
            class _Tagged:
                def authorise(self, ctx, request):
                    calls.append(tag)
                    return inner.authorise(ctx, request)

            return _Tagged()

        return middleware

    service = chain(AuthorisationService(100.0), tagging("outer"), tagging("inner"))
    response = service.authorise(background(), AuthorisationRequest(amount=1.0))
    assert response.decision is Decision.APPROVED
    assert calls == ["outer", "inner"]
