"""
Tests for the OTP gateways.
"""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from medattest.challenges.exceptions import ChallengeExpired, ChallengeMismatch
from medattest.challenges.gateway import HttpOtpGateway, LocalOtpGateway
from medattest.challenges.models import Challenge, ConsumedReason
from medattest.exceptions import NetworkError

from conftest import LICENSE, PHYSICIAN_EMAIL


def test_local_gateway_round_trip(db, issuer, validator, delivery):
    gateway = LocalOtpGateway(issuer, validator)

    handle = asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))
    proof = asyncio.run(gateway.validate(handle, PHYSICIAN_EMAIL, delivery.latest_code(PHYSICIAN_EMAIL)))

    assert proof.challenge_id == handle.challenge_id


def test_local_gateway_cancel_invalidates(db, issuer, validator):
    gateway = LocalOtpGateway(issuer, validator)
    handle = asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))

    asyncio.run(gateway.cancel(LICENSE))

    db.expire_all()
    assert db.get(Challenge, handle.challenge_id).consumed_reason == ConsumedReason.CANCELLED


def remote_otp_service(calls, validate_response=None):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((request.url.path, body))
        if request.url.path == "/otp/send":
            return httpx.Response(200, json={"expiresAt": "2026-03-02T09:10:00+00:00", "challengeId": "remote-1"})
        if request.url.path == "/otp/validate":
            return validate_response or httpx.Response(200, json={"ok": True})
        return httpx.Response(200, json={"ok": True})
    return httpx.MockTransport(handler)


def test_http_gateway_speaks_wire_contract():
    calls = []
    gateway = HttpOtpGateway("http://otp.test", transport=remote_otp_service(calls))

    handle = asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))
    proof = asyncio.run(gateway.validate(handle, PHYSICIAN_EMAIL, "12 34-56"))

    assert calls[0] == ("/otp/send", {"license": LICENSE, "email": PHYSICIAN_EMAIL})
    assert calls[1] == ("/otp/validate", {"license": LICENSE, "email": PHYSICIAN_EMAIL, "code": "12 34-56"})
    assert handle.challenge_id == "remote-1"
    assert handle.expires_at == datetime(2026, 3, 2, 9, 10, tzinfo=timezone.utc)
    assert handle.destination_hint == "a***@clinic.example"
    assert proof.code == "123456"


@pytest.mark.parametrize("reason, status_code, exc_class", [
    ("MISMATCH", 400, ChallengeMismatch),
    ("EXPIRED", 410, ChallengeExpired),
])
def test_http_gateway_maps_reasons_to_exceptions(reason, status_code, exc_class):
    calls = []
    failure = httpx.Response(status_code, json={"ok": False, "reason": reason})
    gateway = HttpOtpGateway("http://otp.test", transport=remote_otp_service(calls, failure))
    handle = asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))

    with pytest.raises(exc_class):
        asyncio.run(gateway.validate(handle, PHYSICIAN_EMAIL, "000000"))


def test_http_gateway_unreachable_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = HttpOtpGateway("http://otp.test", transport=httpx.MockTransport(handler))

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))
    assert exc_info.value.retryable is True


def test_http_gateway_timeout_is_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = HttpOtpGateway("http://otp.test", transport=httpx.MockTransport(handler))

    with pytest.raises(NetworkError):
        asyncio.run(gateway.send(LICENSE, PHYSICIAN_EMAIL))


def test_http_gateway_failed_cancel_is_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = HttpOtpGateway("http://otp.test", transport=httpx.MockTransport(handler))

    asyncio.run(gateway.cancel(LICENSE))
