"""
Tests for client context capture.
"""
import asyncio

import httpx

from medattest.core.client_context import LOOPBACK_ADDRESS, lookup_public_ip


def echo_service(payload=None, status_code=200, error=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if error is not None:
            raise error("unreachable", request=request)
        assert request.url.params["format"] == "json"
        return httpx.Response(status_code, json=payload or {})
    return httpx.MockTransport(handler)


def test_public_ip_from_echo_service():
    transport = echo_service(payload={"ip": "198.51.100.20"})

    assert asyncio.run(lookup_public_ip("http://ip.test", transport=transport)) == "198.51.100.20"


def test_echo_failure_falls_back_to_loopback():
    transport = echo_service(error=httpx.ConnectError)

    assert asyncio.run(lookup_public_ip("http://ip.test", transport=transport)) == LOOPBACK_ADDRESS


def test_echo_error_status_falls_back_to_loopback():
    transport = echo_service(status_code=500)

    assert asyncio.run(lookup_public_ip("http://ip.test", transport=transport)) == LOOPBACK_ADDRESS


def test_echo_without_ip_falls_back_to_loopback():
    transport = echo_service(payload={"unexpected": True})

    assert asyncio.run(lookup_public_ip("http://ip.test", transport=transport)) == LOOPBACK_ADDRESS
