"""
Tests for the physician directory.
"""
import asyncio

import httpx
import pytest

from medattest.attestation.methods import method_availability
from medattest.attestation.schemas import AttestationMethod
from medattest.directory.exceptions import DirectoryLookupFailed
from medattest.directory.schemas import PhysicianIdentity
from medattest.directory.service import HttpPhysicianDirectory
from medattest.exceptions import NetworkError

from conftest import LICENSE, PHYSICIAN_EMAIL, PHYSICIAN_NAME


def identity(license_number=LICENSE, display_name="Dr. Caller Supplied"):
    return PhysicianIdentity(license_number=license_number, display_name=display_name)


def test_resolve_known_physician(directory, physician):
    profile = asyncio.run(directory.resolve(identity()))

    assert profile.license_number == LICENSE
    assert profile.display_name == PHYSICIAN_NAME
    assert profile.email == PHYSICIAN_EMAIL
    assert profile.lookup_failed is False


def test_scenario_d_unknown_license_degrades_profile(directory, db):
    profile = asyncio.run(directory.resolve(identity("CRM404", "Dr. Unknown")))

    assert profile.license_number == "CRM404"
    assert profile.display_name == "Dr. Unknown"
    assert profile.email is None
    assert profile.phone is None
    assert profile.lookup_failed is True

    availability = method_availability(profile)
    assert availability[AttestationMethod.EMAIL_OTP] is not None
    assert availability[AttestationMethod.MANUAL_APPROVAL] is None
    assert availability[AttestationMethod.APP_APPROVAL] is None


def test_inactive_physician_is_not_resolved(directory, physician, db):
    physician.is_active = False
    db.commit()

    profile = asyncio.run(directory.resolve(identity()))

    assert profile.lookup_failed is True


def test_license_is_stripped():
    assert identity("  CRM123 ").license_number == LICENSE


def test_blank_license_is_rejected():
    with pytest.raises(ValueError):
        identity("   ")


def directory_service(status_code=200, payload=None, error=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if error is not None:
            raise error(f"failure for {request.url}", request=request)
        assert request.url.path == "/physician-directory"
        assert request.url.params["license"] == LICENSE
        return httpx.Response(status_code, json=payload or {})
    return httpx.MockTransport(handler)


def test_http_directory_lookup():
    remote = HttpPhysicianDirectory("http://directory.test", transport=directory_service(
        payload={"license": LICENSE, "name": PHYSICIAN_NAME, "email": PHYSICIAN_EMAIL}
    ))

    entry = asyncio.run(remote.lookup(LICENSE))
    profile = asyncio.run(remote.resolve(identity()))

    assert entry.email == PHYSICIAN_EMAIL
    assert entry.phone is None
    assert profile.display_name == PHYSICIAN_NAME
    assert profile.has_email


def test_http_directory_not_found_raises_lookup_failed():
    remote = HttpPhysicianDirectory("http://directory.test", transport=directory_service(status_code=404))

    with pytest.raises(DirectoryLookupFailed):
        asyncio.run(remote.lookup(LICENSE))


@pytest.mark.parametrize("error", [httpx.ConnectError, httpx.ReadTimeout])
def test_http_directory_network_failure_never_escapes_resolve(error):
    remote = HttpPhysicianDirectory("http://directory.test", transport=directory_service(error=error))

    with pytest.raises(NetworkError):
        asyncio.run(remote.lookup(LICENSE))

    profile = asyncio.run(remote.resolve(identity()))
    assert profile.lookup_failed is True
    assert profile.display_name == "Dr. Caller Supplied"


def test_http_directory_malformed_entry_degrades():
    remote = HttpPhysicianDirectory("http://directory.test", transport=directory_service(payload={"unexpected": True}))

    profile = asyncio.run(remote.resolve(identity()))

    assert profile.lookup_failed is True


def test_lookup_route(client, physician):
    response = client.get("/api/v1/physician-directory", params={"license": LICENSE})

    assert response.status_code == 200
    assert response.json() == {
        "license": LICENSE,
        "name": PHYSICIAN_NAME,
        "email": PHYSICIAN_EMAIL,
        "phone": "+5511987654321"
    }


def test_lookup_route_unknown_license(client, db):
    response = client.get("/api/v1/physician-directory", params={"license": "CRM404"})

    assert response.status_code == 404
    assert response.json()["code"] == "DIRECTORY_LOOKUP_FAILED"


def test_register_route_upserts_entry(client, db):
    payload = {"license_number": "CRM777", "full_name": "Dr. Lucas Lima", "email": "lucas@clinic.example"}

    created = client.put("/api/v1/physician-directory", json=payload)
    updated = client.put("/api/v1/physician-directory", json={**payload, "email": "lucas.lima@clinic.example"})

    assert created.status_code == 200
    assert updated.json()["email"] == "lucas.lima@clinic.example"
    lookup = client.get("/api/v1/physician-directory", params={"license": "CRM777"})
    assert lookup.json()["email"] == "lucas.lima@clinic.example"
